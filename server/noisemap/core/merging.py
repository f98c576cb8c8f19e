"""Report ingestion and merging.

This is the core business logic. A new report is either merged into the
closest live report of the same category within blast radius, or stored as a
standalone report. It depends on the ReportStore protocol, not on a concrete
implementation.

Two submissions for the same event that arrive at the same time can both see
no candidate and both be stored standalone. Nothing here serializes work per
partition, so that missed merge is possible; it never corrupts counts.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

import structlog

from noisemap.core.comments import DEFAULT_COMMENT_LIMIT, Comment
from noisemap.core.geo import BLAST_RADIUS_KM, derive_partition_key, find_mergeable_reports
from noisemap.core.models import new_row_key
from noisemap.storage.base import ConcurrencyError, ReportNotFoundError, StoreError

if TYPE_CHECKING:
    from noisemap.core.models import ActingUser, MapBounds, Report
    from noisemap.core.stats import ServerStats
    from noisemap.storage.base import ReportStore

log = structlog.get_logger()


class MergeConflictError(Exception):
    """The merge target could not be updated (changed or deleted meanwhile)."""

    def __init__(self, target_id: str, attempts: int = 1) -> None:
        self.target_id = target_id
        self.attempts = attempts
        super().__init__(f"merge into report {target_id} rejected by store after {attempts} attempt(s)")


class ReportMergingService:
    """Ingests new reports and manages comment threads and upvotes."""

    def __init__(
        self,
        store: ReportStore,
        stats: ServerStats,
        *,
        comment_limit: int = DEFAULT_COMMENT_LIMIT,
        max_merge_attempts: int = 3,
        radii: Mapping[str, float] = BLAST_RADIUS_KM,
    ) -> None:
        self._store = store
        self._stats = stats
        self._comment_limit = comment_limit
        self._max_attempts = max(1, max_merge_attempts)
        self._radii = radii

    @staticmethod
    def is_displayable(report: Report) -> bool:
        return not report.is_merged

    async def find_mergeable_reports(self, new_report: Report) -> list[Report]:
        """Live reports in the new report's partition, closest first."""
        in_partition = await self._store.fetch_by_partition(new_report.partition_key)
        return find_mergeable_reports(in_partition, new_report, self._radii)

    async def ingest(self, new_report: Report, user: ActingUser) -> Report:
        """Merge the report into a nearby one, or store it standalone.

        Returns the merge target or the newly stored report. A target update
        rejected by the store restarts candidate selection from a fresh read;
        after ``max_merge_attempts`` rejections MergeConflictError propagates.
        """
        self._stats.record_submission(user.user_id)

        if not new_report.partition_key:
            new_report.partition_key = derive_partition_key(new_report.latitude, new_report.longitude)
        if not new_report.submitted_by:
            new_report.submitted_by = user.display_name
        if not new_report.submitted_by_id:
            new_report.submitted_by_id = user.user_id
        # The id is fixed up front so merge comments can point back at it.
        if not new_report.id:
            new_report.id = new_row_key()
        new_report.comments.initialize_from_description(
            new_report.description, user.display_name, user.user_id)

        target_id = ""
        for attempt in range(1, self._max_attempts + 1):
            candidates = await self.find_mergeable_reports(new_report)
            if not candidates:
                created = await self._store.create(new_report)
                self._stats.record_created()
                log.info("report_created", report_id=created.id,
                         partition=created.partition_key,
                         noise_type=created.noise_type)
                return created

            target = candidates[0]
            target_id = target.id
            try:
                await self.merge_reports(target, new_report, user)
            except MergeConflictError:
                self._stats.record_merge_conflict()
                log.warning("merge_conflict", target_id=target.id,
                            source_id=new_report.id, attempt=attempt)
                continue
            return target

        raise MergeConflictError(target_id, attempts=self._max_attempts)

    async def merge_reports(self, target: Report, source: Report, user: ActingUser) -> None:
        """Fold ``source`` into ``target`` and persist both.

        The target is written first. If the store rejects it, the source is
        left untouched and unwritten, and MergeConflictError is raised.
        """
        if target.is_merged:
            raise ValueError(f"report {target.id} is merged and cannot be a merge target")
        if source.id and source.id == target.id:
            raise ValueError("cannot merge a report into itself")

        target.comments.append_from_merge(
            source.description, user.display_name, user.user_id, source.id)
        target.merged_count += 1
        target.comments.trim_to_most_recent(self._comment_limit)

        try:
            await self._store.update(target)
        except (ConcurrencyError, ReportNotFoundError) as exc:
            raise MergeConflictError(target.id) from exc

        source.is_merged = True
        source.merged_into_id = target.id
        await self._store.create(source)

        self._stats.record_merged()
        log.info("report_merged", target_id=target.id, source_id=source.id,
                 merged_count=target.merged_count)

    async def _update_report(self, report_id: str, mutate: Callable[[Report], bool]) -> Report | None:
        """Read-modify-write with retry on etag conflicts.

        ``mutate`` returns whether it changed the report; unchanged reports
        are not written. Returns None if the report does not exist.
        """
        for attempt in range(1, self._max_attempts + 1):
            report = await self._store.fetch_by_id(report_id)
            if report is None:
                return None
            if not mutate(report):
                return report
            try:
                return await self._store.update(report)
            except ConcurrencyError:
                log.debug("report_update_conflict", report_id=report_id, attempt=attempt)
                if attempt == self._max_attempts:
                    raise
            except ReportNotFoundError:
                return None
        return None

    async def add_comment(self, report_id: str, text: str, user: ActingUser) -> bool:
        """Append a remark to a report's thread. False on any rejection."""
        if not text:
            return False

        def _append(report: Report) -> bool:
            report.comments.append(text, user.display_name, user.user_id)
            report.comments.trim_to_most_recent(self._comment_limit)
            return True

        try:
            report = await self._update_report(report_id, _append)
        except StoreError:
            self._stats.record_storage_error()
            log.warning("comment_rejected", report_id=report_id, exc_info=True)
            return False
        if report is None:
            return False

        self._stats.record_comment(user.user_id)
        log.info("comment_added", report_id=report_id, comments=len(report.comments))
        return True

    async def edit_comment(self, report_id: str, comment_id: str, text: str,
                           user: ActingUser) -> bool:
        """Change the text of one of the user's own comments."""
        if not text:
            return False
        edited = False

        def _edit(report: Report) -> bool:
            nonlocal edited
            edited = report.comments.edit(comment_id, text, user.user_id)
            return edited

        try:
            report = await self._update_report(report_id, _edit)
        except StoreError:
            self._stats.record_storage_error()
            log.warning("comment_edit_rejected", report_id=report_id,
                        comment_id=comment_id, exc_info=True)
            return False
        return report is not None and edited

    async def list_comments(self, report_id: str) -> list[Comment]:
        report = await self._store.fetch_by_id(report_id)
        if report is None:
            return []
        return report.comments.to_list()

    async def get_report(self, report_id: str) -> Report | None:
        return await self._store.fetch_by_id(report_id)

    async def upvote(self, report_id: str, user: ActingUser) -> Report | None:
        """Add the user's upvote. Repeated upvotes count once."""
        added = False

        def _add(report: Report) -> bool:
            nonlocal added
            added = report.add_upvote(user.user_id)
            return added

        report = await self._update_report(report_id, _add)
        if report is not None and added:
            self._stats.record_upvote(user.user_id)
        return report

    async def remove_upvote(self, report_id: str, user: ActingUser) -> Report | None:
        return await self._update_report(report_id, lambda r: r.remove_upvote(user.user_id))

    async def list_reports(
        self,
        partition_keys: Iterable[str],
        bounds: MapBounds | None = None,
        since: datetime | None = None,
    ) -> list[Report]:
        """Displayable reports of the given partitions, newest first."""
        results: list[Report] = []
        seen: set[str] = set()
        for partition_key in partition_keys:
            if partition_key in seen:
                continue
            seen.add(partition_key)
            for report in await self._store.fetch_by_partition(partition_key):
                if not self.is_displayable(report):
                    continue
                if bounds is not None and not bounds.contains(report.latitude, report.longitude):
                    continue
                if since is not None and (report.report_date is None or report.report_date < since):
                    continue
                results.append(report)
        results.sort(key=lambda r: r.report_date.timestamp() if r.report_date else 0.0, reverse=True)
        return results
