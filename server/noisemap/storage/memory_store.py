"""In-process dict implementation of ReportStore."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

from noisemap.core.models import Report, new_row_key
from noisemap.storage.base import ConcurrencyError, ReportExistsError, ReportNotFoundError


class InMemoryReportStore:
    """ReportStore backed by a dict of flat records. Zero dependencies.

    Records are kept in their at-rest form so every read decodes a fresh
    Report, the same way a table store would.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def fetch_by_partition(self, partition_key: str) -> list[Report]:
        return [
            Report.from_record(rec)
            for rec in self._records.values()
            if rec["PartitionKey"] == partition_key
        ]

    async def fetch_by_id(self, report_id: str) -> Report | None:
        rec = self._records.get(report_id)
        return Report.from_record(rec) if rec is not None else None

    async def create(self, report: Report) -> Report:
        async with self._lock:
            now = datetime.now(timezone.utc)
            if not report.id:
                report.id = new_row_key(now)
            elif report.id in self._records:
                raise ReportExistsError(report.id)
            if report.report_date is None:
                report.report_date = now
            report.etag = uuid.uuid4().hex
            self._records[report.id] = report.to_record()
            return report

    async def update(self, report: Report) -> Report:
        async with self._lock:
            current = self._records.get(report.id)
            if current is None:
                raise ReportNotFoundError(report.id)
            if current["ETag"] != report.etag:
                raise ConcurrencyError(report.id)
            report.etag = uuid.uuid4().hex
            self._records[report.id] = report.to_record()
            return report
