"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: NOISEMAP_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    backend: str = "file"  # "file" or "memory"
    base_dir: str = "data/reports"


@dataclass
class MergingConfig:
    comment_limit: int = 5
    max_merge_attempts: int = 3


@dataclass
class LimitsConfig:
    max_description_length: int = 2000
    max_comment_length: int = 1000
    active_window_seconds: float = 900.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    merging: MergingConfig = field(default_factory=MergingConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = ("server", "storage", "merging", "limits", "logging")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "NOISEMAP_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "NOISEMAP_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "NOISEMAP_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "NOISEMAP_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "NOISEMAP_STORAGE_BASE_DIR": lambda v: setattr(config.storage, "base_dir", v),
        "NOISEMAP_MERGING_COMMENT_LIMIT": lambda v: setattr(config.merging, "comment_limit", int(v)),
        "NOISEMAP_MERGING_MAX_ATTEMPTS": lambda v: setattr(config.merging, "max_merge_attempts", int(v)),
        "NOISEMAP_LIMITS_MAX_DESCRIPTION": lambda v: setattr(config.limits, "max_description_length", int(v)),
        "NOISEMAP_LIMITS_MAX_COMMENT": lambda v: setattr(config.limits, "max_comment_length", int(v)),
        "NOISEMAP_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "NOISEMAP_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "NOISEMAP_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
        "NOISEMAP_LOG_FILE": lambda v: setattr(config.logging, "file", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name in _SECTIONS:
            section = getattr(config, section_name)
            for k, v in (raw.get(section_name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
