"""Server statistics and active-user tracking.

Tracks in-memory counters and a sliding window of recently active users.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class UserActivity:
    """Tracks a single user's recent activity."""
    last_seen: float          # time.monotonic() timestamp
    reports_sent: int = 0
    comments_sent: int = 0


class ServerStats:
    """Thread-safe server statistics with active-user tracking.

    A user is considered active if they submitted a report, a comment or an
    upvote within ``active_window_seconds``.
    """

    def __init__(self, active_window_seconds: float = 900.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.reports_received: int = 0
        self.reports_created: int = 0
        self.reports_merged: int = 0
        self.reports_rejected: int = 0
        self.comments_added: int = 0
        self.upvotes_recorded: int = 0
        self.merge_conflicts: int = 0
        self.storage_errors: int = 0

        # User tracking: user_id → UserActivity
        self._users: dict[str, UserActivity] = {}

    def _touch(self, user_id: str, now: float) -> UserActivity:
        """Mark a user as seen. Caller holds lock."""
        activity = self._users.get(user_id)
        if activity is None:
            activity = UserActivity(last_seen=now)
            self._users[user_id] = activity
        else:
            activity.last_seen = now
        return activity

    def record_submission(self, user_id: str) -> None:
        """Record that a report was received from a user."""
        now = time.monotonic()
        with self._lock:
            self.reports_received += 1
            self._touch(user_id, now).reports_sent += 1

    def record_created(self) -> None:
        with self._lock:
            self.reports_created += 1

    def record_merged(self) -> None:
        with self._lock:
            self.reports_merged += 1

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.reports_rejected += count

    def record_comment(self, user_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.comments_added += 1
            self._touch(user_id, now).comments_sent += 1

    def record_upvote(self, user_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.upvotes_recorded += 1
            self._touch(user_id, now)

    def record_merge_conflict(self) -> None:
        with self._lock:
            self.merge_conflicts += 1

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def _prune_stale_users(self, now: float) -> None:
        """Remove users not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [uid for uid, act in self._users.items() if act.last_seen < cutoff]
        for uid in stale:
            del self._users[uid]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_users(now_mono)

            reporting = sum(1 for act in self._users.values() if act.reports_sent > 0)

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "reports_received": self.reports_received,
                "reports_created": self.reports_created,
                "reports_merged": self.reports_merged,
                "reports_rejected": self.reports_rejected,
                "comments_added": self.comments_added,
                "upvotes_recorded": self.upvotes_recorded,
                "merge_conflicts": self.merge_conflicts,
                "storage_errors": self.storage_errors,
                "active_users": {
                    "total": len(self._users),
                    "reporting": reporting,
                    "window_seconds": self._active_window,
                },
            }
