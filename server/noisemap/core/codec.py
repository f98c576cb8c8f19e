"""Text-blob codec for list and object fields stored in flat records.

Comments, category tags and upvoter ids are kept at rest as JSON text so that
any key-value table can hold a report. Decoding is fail-soft: a blob that does
not parse, or parses to the wrong shape, yields an empty collection and a
warning in the log. Stored history never breaks a read.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog

log = structlog.get_logger()


def encode_list(items: list[Any]) -> str:
    return json.dumps(items, separators=(",", ":"))


def decode_list(blob: str | None, *, field_name: str = "") -> list[Any]:
    """Decode a JSON array blob. Empty, corrupt or non-array input gives []."""
    if not blob:
        return []
    try:
        value = json.loads(blob)
    except (json.JSONDecodeError, TypeError):
        log.warning("blob_decode_failed", field=field_name, reason="invalid_json")
        return []
    if not isinstance(value, list):
        log.warning("blob_decode_failed", field=field_name, reason="not_a_list")
        return []
    return value


def decode_string_list(blob: str | None, *, field_name: str = "") -> list[str]:
    """Like decode_list, keeping only string entries."""
    return [v for v in decode_list(blob, field_name=field_name) if isinstance(v, str)]


def format_timestamp(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp. Naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
