"""NoiseMap server: core internal data models.

These are plain dataclasses with no framework dependencies.
Request JSON and stored records are converted to/from these at the boundary.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from noisemap.core.codec import (
    decode_string_list,
    encode_list,
    format_timestamp,
    parse_timestamp,
)
from noisemap.core.comments import CommentThread

# Primary noise categories offered by the client.
NOISE_CATEGORIES = ("Fireworks", "Protests", "Sports", "Construction")
# Used when a submission carries no category.
DEFAULT_CATEGORY = "Other"

BLAST_RADIUS_TIERS = ("Small", "Medium", "Large")

MIN_NOISE_LEVEL = 1
MAX_NOISE_LEVEL = 10


def new_row_key(now: datetime | None = None) -> str:
    """Unique, chronologically sortable report id: yyyyMMddHHmmssfff_<hex>."""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
    return f"{stamp}_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class MapBounds:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


@dataclass(frozen=True)
class ActingUser:
    """The authenticated user behind a request."""
    user_id: str
    display_name: str


@dataclass
class Report:
    latitude: float
    longitude: float
    noise_type: str
    description: str = ""
    partition_key: str = ""
    id: str = ""
    categories: list[str] = field(default_factory=list)
    noise_level: int = 5
    blast_radius: str = ""
    street_address: str = ""
    city: str = ""
    address: str = ""
    time_option: str = "NOW"
    is_recurring: bool = False
    submitted_by: str = ""
    submitted_by_id: str = ""
    report_date: datetime | None = None
    upvoted_by: list[str] = field(default_factory=list)
    is_merged: bool = False
    merged_into_id: str | None = None
    merged_count: int = 0
    comments: CommentThread = field(default_factory=CommentThread)
    etag: str = ""

    @property
    def upvotes(self) -> int:
        return len(self.upvoted_by)

    def has_upvoted(self, user_id: str) -> bool:
        return user_id in self.upvoted_by

    def add_upvote(self, user_id: str) -> bool:
        """Record an upvote. Returns False if the user had already upvoted."""
        if not user_id or user_id in self.upvoted_by:
            return False
        self.upvoted_by.append(user_id)
        return True

    def remove_upvote(self, user_id: str) -> bool:
        if user_id not in self.upvoted_by:
            return False
        self.upvoted_by.remove(user_id)
        return True

    def display_text(self) -> str:
        """Most recent comment, or the description for an empty thread."""
        return self.comments.latest_text(self.description)

    def to_record(self) -> dict:
        """Flat key-value record; list-valued fields become JSON text blobs."""
        return {
            "PartitionKey": self.partition_key,
            "RowKey": self.id,
            "ETag": self.etag,
            "Latitude": self.latitude,
            "Longitude": self.longitude,
            "NoiseType": self.noise_type,
            "Categories": encode_list(self.categories),
            "NoiseLevel": self.noise_level,
            "BlastRadius": self.blast_radius,
            "Description": self.description,
            "StreetAddress": self.street_address,
            "City": self.city,
            "Address": self.address,
            "TimeOption": self.time_option,
            "IsRecurring": self.is_recurring,
            "SubmittedBy": self.submitted_by,
            "SubmittedById": self.submitted_by_id,
            "ReportDate": format_timestamp(self.report_date),
            "Upvotes": self.upvotes,
            "UpvotedBy": encode_list(self.upvoted_by),
            "IsMerged": self.is_merged,
            "MergedIntoId": self.merged_into_id or "",
            "MergedCount": self.merged_count,
            "Comments": self.comments.to_blob(),
        }

    @classmethod
    def from_record(cls, record: dict) -> Report:
        # Duplicate ids in a stored upvoter blob collapse to one vote.
        upvoted_by = list(dict.fromkeys(decode_string_list(record.get("UpvotedBy"), field_name="upvoted_by")))
        return cls(
            partition_key=record.get("PartitionKey", ""),
            id=record.get("RowKey", ""),
            etag=record.get("ETag", ""),
            latitude=float(record.get("Latitude", 0.0)),
            longitude=float(record.get("Longitude", 0.0)),
            noise_type=record.get("NoiseType", ""),
            categories=decode_string_list(record.get("Categories"), field_name="categories"),
            noise_level=int(record.get("NoiseLevel", 0)),
            blast_radius=record.get("BlastRadius", ""),
            description=record.get("Description", ""),
            street_address=record.get("StreetAddress", ""),
            city=record.get("City", ""),
            address=record.get("Address", ""),
            time_option=record.get("TimeOption", "NOW"),
            is_recurring=bool(record.get("IsRecurring", False)),
            submitted_by=record.get("SubmittedBy", ""),
            submitted_by_id=record.get("SubmittedById", ""),
            report_date=parse_timestamp(record.get("ReportDate")),
            upvoted_by=upvoted_by,
            is_merged=bool(record.get("IsMerged", False)),
            merged_into_id=record.get("MergedIntoId") or None,
            merged_count=int(record.get("MergedCount", 0)),
            comments=CommentThread.from_blob(record.get("Comments")),
        )

    def to_geojson_feature(self) -> dict:
        return {
            "type": "Feature",
            "geometry": {
                "type": "Point",
                "coordinates": [round(self.longitude, 6), round(self.latitude, 6)],
            },
            "properties": {
                "id": self.id,
                "zip_code": self.partition_key,
                "noise_type": self.noise_type,
                "noise_level": self.noise_level,
                "blast_radius": self.blast_radius,
                "display_text": self.display_text(),
                "upvotes": self.upvotes,
                "merged_count": self.merged_count,
                "comment_count": len(self.comments),
                "report_date": format_timestamp(self.report_date),
            },
        }
