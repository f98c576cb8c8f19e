"""Storage interface (port) for persisting noise reports."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from noisemap.core.models import Report


class StoreError(Exception):
    """Base class for report store failures."""


class ReportNotFoundError(StoreError):
    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"report {report_id} not found")


class ReportExistsError(StoreError):
    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"report {report_id} already exists")


class ConcurrencyError(StoreError):
    """The stored report changed since it was read (etag mismatch)."""

    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"report {report_id} was modified concurrently")


class ReportStore(Protocol):
    """Port: partitioned key-value storage of reports.

    Reports handed out are copies; mutating them has no effect until
    ``update`` is called.
    """

    async def fetch_by_partition(self, partition_key: str) -> list[Report]: ...

    async def fetch_by_id(self, report_id: str) -> Report | None: ...

    async def create(self, report: Report) -> Report:
        """Insert a new report, assigning id, report_date and etag."""
        ...

    async def update(self, report: Report) -> Report:
        """Overwrite an existing report.

        Raises ReportNotFoundError if it is gone and ConcurrencyError if its
        etag no longer matches the stored one.
        """
        ...
