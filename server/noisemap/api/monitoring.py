"""Health check and monitoring endpoints."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from fastapi import APIRouter

from noisemap.core.geo import BLAST_RADIUS_KM
from noisemap.core.models import (
    BLAST_RADIUS_TIERS,
    DEFAULT_CATEGORY,
    MAX_NOISE_LEVEL,
    MIN_NOISE_LEVEL,
    NOISE_CATEGORIES,
)

router = APIRouter(prefix="/api/v1")

# Load build info once at import time.
_BUILD_INFO_PATH = Path(__file__).parent.parent / "build_info.json"
_BUILD_INFO: dict = {}
if _BUILD_INFO_PATH.exists():
    try:
        _BUILD_INFO = json.loads(_BUILD_INFO_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        pass


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from noisemap.main import get_config, get_stats

    stats = get_stats()
    config = get_config()

    storage_writable = True
    disk_free_gb = -1.0
    if config.storage.backend == "file":
        storage_path = Path(config.storage.base_dir)
        try:
            disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
            disk_free_gb = round(disk.free / (1024 ** 3), 1)
        except OSError:
            storage_writable = False

    snapshot = stats.snapshot()
    result = {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "storage_backend": config.storage.backend,
        "storage_writable": storage_writable,
        "disk_free_gb": disk_free_gb,
    }
    result.update(_BUILD_INFO)
    return result


@router.get("/stats")
async def stats() -> dict:
    """Detailed server statistics including active user counts.

    The ``active_users`` section shows:
    - ``total``: users seen in the last N seconds (configurable window)
    - ``reporting``: of those, users who submitted at least one report
    - ``window_seconds``: the time window used for "active" calculation
    """
    from noisemap.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for the web client.

    The client calls this on startup to build the reporting form.
    """
    from noisemap.main import get_config

    config = get_config()
    return {
        "noise_categories": list(NOISE_CATEGORIES),
        "default_category": DEFAULT_CATEGORY,
        "blast_radius_tiers": [
            {"name": tier, "km": BLAST_RADIUS_KM[tier.lower()]}
            for tier in BLAST_RADIUS_TIERS
        ],
        "noise_level_range": [MIN_NOISE_LEVEL, MAX_NOISE_LEVEL],
        "comment_limit": config.merging.comment_limit,
        "max_description_length": config.limits.max_description_length,
        "max_comment_length": config.limits.max_comment_length,
    }
