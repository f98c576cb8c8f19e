"""Comment thread attached to a noise report.

A thread is an ordered, size-capped log of user remarks. The report's original
description becomes the first entry when the report is created, and merged
reports contribute their description as an entry tagged ``is_from_merge``.

Ordering is by ``created_at``; entries sharing a timestamp keep their
insertion order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator

from noisemap.core.codec import decode_list, encode_list, format_timestamp, parse_timestamp

# Number of entries a thread keeps after any write.
DEFAULT_COMMENT_LIMIT = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Comment:
    text: str
    username: str
    user_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    modified_at: datetime | None = None
    is_edited: bool = False
    is_from_merge: bool = False
    original_report_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "username": self.username,
            "userId": self.user_id,
            "createdAt": format_timestamp(self.created_at),
            "modifiedAt": format_timestamp(self.modified_at),
            "isEdited": self.is_edited,
            "isFromMerge": self.is_from_merge,
            "originalReportId": self.original_report_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Comment | None:
        """Build a comment from its stored form, or None if it is unusable."""
        if not isinstance(data, dict):
            return None
        created_at = parse_timestamp(data.get("createdAt"))
        if created_at is None:
            return None
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            text=str(data.get("text") or ""),
            username=str(data.get("username") or ""),
            user_id=str(data.get("userId") or ""),
            created_at=created_at,
            modified_at=parse_timestamp(data.get("modifiedAt")),
            is_edited=bool(data.get("isEdited", False)),
            is_from_merge=bool(data.get("isFromMerge", False)),
            original_report_id=data.get("originalReportId") or None,
        )


class CommentThread:
    """Ordered comment log, oldest first."""

    def __init__(self, comments: list[Comment] | None = None) -> None:
        self._comments: list[Comment] = list(comments or [])

    def __len__(self) -> int:
        return len(self._comments)

    def __iter__(self) -> Iterator[Comment]:
        return iter(self._comments)

    def __bool__(self) -> bool:
        return bool(self._comments)

    def to_list(self) -> list[Comment]:
        return list(self._comments)

    def find(self, comment_id: str) -> Comment | None:
        for c in self._comments:
            if c.id == comment_id:
                return c
        return None

    def initialize_from_description(self, description: str, username: str, user_id: str) -> Comment | None:
        """Turn a report's description into the first thread entry.

        No-op when the description is empty.
        """
        if not description:
            return None
        comment = Comment(text=description, username=username, user_id=user_id)
        self._comments.append(comment)
        return comment

    def append(self, text: str, username: str, user_id: str) -> Comment:
        """Append a user remark. Callers trim afterwards."""
        comment = Comment(text=text, username=username, user_id=user_id)
        self._comments.append(comment)
        return comment

    def append_from_merge(self, description: str, username: str, user_id: str,
                          originating_report_id: str) -> Comment:
        comment = Comment(
            text=description,
            username=username,
            user_id=user_id,
            is_from_merge=True,
            original_report_id=originating_report_id,
        )
        self._comments.append(comment)
        return comment

    def edit(self, comment_id: str, text: str, user_id: str) -> bool:
        """Replace a comment's text. Only its author may edit it."""
        comment = self.find(comment_id)
        if comment is None or comment.user_id != user_id:
            return False
        comment.text = text
        comment.modified_at = _utcnow()
        comment.is_edited = True
        return True

    def _chronological(self) -> list[Comment]:
        indexed = sorted(enumerate(self._comments), key=lambda pair: (pair[1].created_at, pair[0]))
        return [c for _, c in indexed]

    def trim_to_most_recent(self, n: int = DEFAULT_COMMENT_LIMIT) -> int:
        """Keep the n most recent entries, oldest first. Returns how many were dropped."""
        if len(self._comments) <= n:
            return 0
        ordered = self._chronological()
        dropped = len(ordered) - n
        self._comments = ordered[dropped:]
        return dropped

    def latest_text(self, fallback: str = "") -> str:
        if not self._comments:
            return fallback
        return self._chronological()[-1].text

    def to_blob(self) -> str:
        return encode_list([c.to_dict() for c in self._comments])

    @classmethod
    def from_blob(cls, blob: str | None) -> CommentThread:
        """Decode a stored thread. Never raises; unusable entries are skipped."""
        comments = []
        for item in decode_list(blob, field_name="comments"):
            comment = Comment.from_dict(item)
            if comment is not None:
                comments.append(comment)
        return cls(comments)
