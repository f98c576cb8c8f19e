"""Geographic helpers and the report merge policy.

Two reports describe the same noise event when they share a primary category
and lie within the larger of their two blast radii. Candidates for a merge are
ranked by distance so that a new report always folds into the closest
matching live report.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from noisemap.core.models import Report


# Earth radius in kilometers (for Haversine).
EARTH_RADIUS_KM = 6371.0

# Blast radius tier -> merge catchment distance in kilometers.
BLAST_RADIUS_KM: Mapping[str, float] = {
    "small": 0.1,
    "medium": 0.5,
    "large": 1.0,
}

# Unknown or empty tiers get the smallest catchment.
DEFAULT_BLAST_RADIUS_KM = 0.1

# Resolution of the fallback partition grid (0.1 degree cells).
GRID_CELLS_PER_DEGREE = 10


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def report_distance_km(a: Report, b: Report) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def blast_radius_km(tier: str | None, radii: Mapping[str, float] = BLAST_RADIUS_KM) -> float:
    """Distance for a blast radius tier name ("Small", "Medium", "Large")."""
    return radii.get((tier or "").strip().lower(), DEFAULT_BLAST_RADIUS_KM)


def should_merge(a: Report, b: Report, radii: Mapping[str, float] = BLAST_RADIUS_KM) -> bool:
    """True if both reports describe the same event.

    Only the primary category is compared, exactly. The distance bound is
    inclusive.
    """
    if a.noise_type != b.noise_type:
        return False
    max_radius = max(blast_radius_km(a.blast_radius, radii), blast_radius_km(b.blast_radius, radii))
    return report_distance_km(a, b) <= max_radius


def find_mergeable_reports(
    existing: Iterable[Report],
    new_report: Report,
    radii: Mapping[str, float] = BLAST_RADIUS_KM,
) -> list[Report]:
    """Live reports the new report may merge into, closest first.

    The caller scopes ``existing`` to the new report's partition. Reports that
    were already merged away are never candidates.
    """
    candidates = [
        r for r in existing
        if not r.is_merged
        and not (new_report.id and r.id == new_report.id)
        and should_merge(r, new_report, radii)
    ]
    candidates.sort(key=lambda r: report_distance_km(new_report, r))
    return candidates


def find_reports_within_distance(
    reports: Iterable[Report],
    latitude: float,
    longitude: float,
    max_distance_km: float,
) -> list[Report]:
    return [
        r for r in reports
        if haversine_km(latitude, longitude, r.latitude, r.longitude) <= max_distance_km
    ]


def grid_cell(latitude: float, longitude: float) -> tuple[int, int]:
    return (math.floor(latitude * GRID_CELLS_PER_DEGREE),
            math.floor(longitude * GRID_CELLS_PER_DEGREE))


def grid_partition_key(lat_cell: int, lon_cell: int) -> str:
    return f"grid_{lat_cell}_{lon_cell}"


def derive_partition_key(latitude: float, longitude: float) -> str:
    """Stand-in partition for coordinates when a submission has no postal code.

    Not a reverse geocoder: a grid cell, so that nearby reports without a
    postal code still share a partition.
    """
    return grid_partition_key(*grid_cell(latitude, longitude))
