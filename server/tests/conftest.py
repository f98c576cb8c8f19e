"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import noisemap.main as main_module
from noisemap.config import AppConfig
from noisemap.core.merging import ReportMergingService
from noisemap.core.models import ActingUser, Report
from noisemap.core.stats import ServerStats
from noisemap.storage.file_store import FileReportStore
from noisemap.storage.memory_store import InMemoryReportStore


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.base_dir = str(tmp_path / "data")
    config.logging.level = "warning"

    stats = ServerStats(active_window_seconds=config.limits.active_window_seconds)
    store = FileReportStore(base_dir=config.storage.base_dir)
    service = ReportMergingService(
        store=store,
        stats=stats,
        comment_limit=config.merging.comment_limit,
        max_merge_attempts=config.merging.max_merge_attempts,
    )

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._service = service

    yield

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._service = None


@pytest.fixture
async def client():
    from noisemap.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def alice() -> ActingUser:
    return ActingUser(user_id="user-alice", display_name="alice")


@pytest.fixture
def bob() -> ActingUser:
    return ActingUser(user_id="user-bob", display_name="bob")


@pytest.fixture
def memory_store() -> InMemoryReportStore:
    return InMemoryReportStore()


@pytest.fixture
def service(memory_store) -> ReportMergingService:
    return ReportMergingService(store=memory_store, stats=ServerStats())


def make_report(lat: float = 40.0, lon: float = -74.0, *, noise_type: str = "Construction",
                blast_radius: str = "Medium", description: str = "jackhammer noise",
                partition_key: str = "10001", **kwargs) -> Report:
    return Report(
        latitude=lat,
        longitude=lon,
        noise_type=noise_type,
        blast_radius=blast_radius,
        description=description,
        partition_key=partition_key,
        **kwargs,
    )
