"""NoiseMap server: main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, storage, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import IO

import structlog
from fastapi import FastAPI

from noisemap.api.monitoring import router as monitoring_router
from noisemap.api.reports import router as reports_router
from noisemap.config import AppConfig, load_config
from noisemap.core.merging import ReportMergingService
from noisemap.core.stats import ServerStats
from noisemap.storage.base import ReportStore
from noisemap.storage.file_store import FileReportStore
from noisemap.storage.memory_store import InMemoryReportStore

log = structlog.get_logger()

# Module-level singletons (set during startup)
_service: ReportMergingService | None = None
_stats: ServerStats | None = None
_config: AppConfig | None = None


def get_service() -> ReportMergingService:
    assert _service is not None, "Server not initialized"
    return _service


def get_stats() -> ServerStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def _setup_logging(config: AppConfig) -> IO[str] | None:
    """Configure structlog based on the logging config.

    Returns the opened log file, if any; the caller closes it on shutdown.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    log_file = None
    if config.logging.file:
        log_file = open(config.logging.file, "a")
        logger_factory = structlog.WriteLoggerFactory(file=log_file)
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
        logger_factory=logger_factory,
    )
    return log_file


def build_store(config: AppConfig) -> ReportStore:
    if config.storage.backend == "memory":
        return InMemoryReportStore()
    if config.storage.backend == "file":
        return FileReportStore(base_dir=config.storage.base_dir)
    raise ValueError(f"unknown storage backend: {config.storage.backend!r}")


def build_service(config: AppConfig, stats: ServerStats) -> ReportMergingService:
    return ReportMergingService(
        store=build_store(config),
        stats=stats,
        comment_limit=config.merging.comment_limit,
        max_merge_attempts=config.merging.max_merge_attempts,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _service, _stats, _config

    _config = load_config()
    log_file = _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             storage_backend=_config.storage.backend,
             storage_dir=_config.storage.base_dir)

    _stats = ServerStats(active_window_seconds=_config.limits.active_window_seconds)
    _service = build_service(_config, _stats)

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    log.info("server_stopped")

    if log_file is not None:
        structlog.configure(logger_factory=structlog.PrintLoggerFactory())
        log_file.close()


app = FastAPI(
    title="NoiseMap",
    description="Noise complaint reporting server",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(reports_router)
app.include_router(monitoring_router)
