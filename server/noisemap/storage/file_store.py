"""File-based storage implementation.

Stores each report as one flat JSON record (the same shape a key-value table
would hold, list fields as text blobs) at:

    base_dir/<partition>/<report id>.json

An id -> path index is rebuilt by scanning base_dir at startup.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path

import structlog

from noisemap.core.models import Report, new_row_key
from noisemap.storage.base import ConcurrencyError, ReportExistsError, ReportNotFoundError

log = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value) or "_"


class FileReportStore:
    """ReportStore backed by partition directories on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._index: dict[str, Path] = {}
        self._rebuild_index()

    def _rebuild_index(self) -> None:
        for path in self._base_dir.glob("*/*.json"):
            self._index[path.stem] = path
        log.debug("report_index_built", reports=len(self._index),
                  path=str(self._base_dir))

    def _partition_dir(self, partition_key: str) -> Path:
        path = self._base_dir / _safe_name(partition_key)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _read(self, path: Path) -> Report | None:
        """Load one record. A corrupt file is logged and skipped."""
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("report_record_unreadable", path=str(path))
            return None
        if not isinstance(record, dict):
            log.warning("report_record_unreadable", path=str(path))
            return None
        try:
            return Report.from_record(record)
        except (TypeError, ValueError):
            log.warning("report_record_unreadable", path=str(path), exc_info=True)
            return None

    def _write(self, report: Report) -> None:
        path = self._partition_dir(report.partition_key) / f"{_safe_name(report.id)}.json"
        tmp_path = path.with_suffix(".json.tmp")
        payload = json.dumps(report.to_record(), separators=(",", ":"))
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)

        old_path = self._index.get(report.id)
        if old_path is not None and old_path != path:
            old_path.unlink(missing_ok=True)
        self._index[report.id] = path

    async def fetch_by_partition(self, partition_key: str) -> list[Report]:
        part_dir = self._base_dir / _safe_name(partition_key)
        if not part_dir.is_dir():
            return []
        reports = []
        for path in sorted(part_dir.glob("*.json")):
            report = self._read(path)
            if report is not None and report.partition_key == partition_key:
                reports.append(report)
        return reports

    async def fetch_by_id(self, report_id: str) -> Report | None:
        path = self._index.get(report_id)
        if path is None or not path.exists():
            return None
        return self._read(path)

    async def create(self, report: Report) -> Report:
        async with self._lock:
            now = datetime.now(timezone.utc)
            if not report.id:
                report.id = new_row_key(now)
            elif report.id in self._index:
                raise ReportExistsError(report.id)
            if report.report_date is None:
                report.report_date = now
            report.etag = uuid.uuid4().hex
            self._write(report)
            log.debug("report_written", report_id=report.id,
                      partition=report.partition_key)
            return report

    async def update(self, report: Report) -> Report:
        async with self._lock:
            current = await self.fetch_by_id(report.id)
            if current is None:
                raise ReportNotFoundError(report.id)
            if current.etag != report.etag:
                raise ConcurrencyError(report.id)
            report.etag = uuid.uuid4().hex
            self._write(report)
            log.debug("report_written", report_id=report.id,
                      partition=report.partition_key)
            return report
