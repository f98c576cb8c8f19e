"""Noise report API endpoints.

This is the thin FastAPI adapter. It parses HTTP requests into internal
models, resolves the acting user, and calls the merging service.

The acting user comes from the ``X-User-Id`` / ``X-User-Name`` headers, which
the authenticating proxy in front of this server sets after token validation.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from noisemap.core.codec import format_timestamp, parse_timestamp
from noisemap.core.comments import Comment
from noisemap.core.geo import grid_cell, grid_partition_key
from noisemap.core.models import (
    DEFAULT_CATEGORY,
    MAX_NOISE_LEVEL,
    MIN_NOISE_LEVEL,
    NOISE_CATEGORIES,
    ActingUser,
    MapBounds,
    Report,
)
from noisemap.core.merging import MergeConflictError
from noisemap.storage.base import ConcurrencyError

router = APIRouter(prefix="/api/v1")

# Grid partitions scanned for a bounds-only query are capped at this many cells.
_MAX_GRID_CELLS = 400


class _InvalidReport(ValueError):
    pass


def _acting_user(request: Request) -> ActingUser | None:
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        return None
    display_name = request.headers.get("x-user-name", "").strip() or user_id
    return ActingUser(user_id=user_id, display_name=display_name)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=status_code)


async def _read_json(request: Request) -> dict | None:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _parse_json_report(data: dict, max_description_length: int) -> Report:
    """Parse a report submission, raising _InvalidReport on bad input."""
    if data.get("latitude") is None or data.get("longitude") is None:
        raise _InvalidReport("latitude and longitude are required")
    try:
        lat = float(data["latitude"])
        lon = float(data["longitude"])
    except (TypeError, ValueError):
        raise _InvalidReport("latitude and longitude must be numbers")
    if lat == 0 and lon == 0:
        raise _InvalidReport("latitude and longitude are required")
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise _InvalidReport("coordinates out of range")

    description = str(data.get("description") or "").strip()
    if not description:
        raise _InvalidReport("description is required")
    if len(description) > max_description_length:
        raise _InvalidReport(f"description longer than {max_description_length} characters")

    noise_type = str(data.get("noise_type") or DEFAULT_CATEGORY)
    if noise_type not in NOISE_CATEGORIES and noise_type != DEFAULT_CATEGORY:
        raise _InvalidReport(f"unknown noise_type {noise_type!r}")

    noise_level = data.get("noise_level", 5)
    if not isinstance(noise_level, int) or isinstance(noise_level, bool) \
            or not MIN_NOISE_LEVEL <= noise_level <= MAX_NOISE_LEVEL:
        raise _InvalidReport(f"noise_level must be an integer {MIN_NOISE_LEVEL}-{MAX_NOISE_LEVEL}")

    raw_categories = data.get("categories")
    if not isinstance(raw_categories, list):
        raw_categories = []
    categories = [str(c) for c in raw_categories if c]
    zip_code = str(data.get("zip_code") or "").strip()

    return Report(
        latitude=lat,
        longitude=lon,
        description=description,
        noise_type=noise_type,
        categories=categories or [noise_type],
        noise_level=noise_level,
        blast_radius=str(data.get("blast_radius") or ""),
        partition_key=zip_code,
        street_address=str(data.get("street_address") or ""),
        city=str(data.get("city") or ""),
        address=str(data.get("address") or ""),
        time_option=str(data.get("time_option") or "NOW"),
        is_recurring=bool(data.get("is_recurring", False)),
    )


def _comment_to_detail(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "text": comment.text,
        "username": comment.username,
        "user_id": comment.user_id,
        "created_at": format_timestamp(comment.created_at),
        "modified_at": format_timestamp(comment.modified_at),
        "is_edited": comment.is_edited,
        "is_from_merge": comment.is_from_merge,
        "original_report_id": comment.original_report_id,
    }


def _report_to_detail(report: Report, user: ActingUser | None = None) -> dict:
    """Convert a report to the JSON object returned to clients."""
    detail = {
        "id": report.id,
        "zip_code": report.partition_key,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "noise_type": report.noise_type,
        "categories": list(report.categories),
        "noise_level": report.noise_level,
        "blast_radius": report.blast_radius,
        "description": report.description,
        "display_text": report.display_text(),
        "street_address": report.street_address,
        "city": report.city,
        "address": report.address,
        "time_option": report.time_option,
        "is_recurring": report.is_recurring,
        "submitted_by": report.submitted_by,
        "report_date": format_timestamp(report.report_date),
        "upvotes": report.upvotes,
        "is_merged": report.is_merged,
        "merged_into_id": report.merged_into_id,
        "merged_count": report.merged_count,
        "comments": [_comment_to_detail(c) for c in report.comments],
    }
    if user is not None:
        detail["has_user_upvoted"] = report.has_upvoted(user.user_id)
    return detail


def _grid_partitions(bounds: MapBounds) -> list[str] | None:
    """Derived grid partitions covering the bounds, or None if too many."""
    min_lat_cell, min_lon_cell = grid_cell(bounds.min_lat, bounds.min_lon)
    max_lat_cell, max_lon_cell = grid_cell(bounds.max_lat, bounds.max_lon)
    lat_cells = range(min_lat_cell, max_lat_cell + 1)
    lon_cells = range(min_lon_cell, max_lon_cell + 1)
    if len(lat_cells) * len(lon_cells) > _MAX_GRID_CELLS:
        return None
    return [grid_partition_key(lat, lon) for lat in lat_cells for lon in lon_cells]


@router.post("/reports")
async def submit_report(request: Request) -> JSONResponse:
    """Submit a noise report.

    The report is merged into a matching nearby report when one exists; the
    response carries whichever report now represents the event.
    """
    from noisemap.main import get_config, get_service, get_stats

    user = _acting_user(request)
    if user is None:
        return _error(401, "user not authenticated")

    body = await _read_json(request)
    if body is None:
        get_stats().record_rejected()
        return _error(400, "invalid JSON")

    try:
        report = _parse_json_report(body, get_config().limits.max_description_length)
    except _InvalidReport as exc:
        get_stats().record_rejected()
        return _error(422, str(exc))

    try:
        result = await get_service().ingest(report, user)
    except MergeConflictError as exc:
        return _error(409, str(exc))

    return JSONResponse(
        content={"report": _report_to_detail(result, user), "merged": report.is_merged},
        status_code=201,
    )


@router.get("/reports")
async def list_reports(
    zip_codes: str | None = Query(default=None),
    min_lat: float | None = Query(default=None, ge=-90, le=90),
    max_lat: float | None = Query(default=None, ge=-90, le=90),
    min_lon: float | None = Query(default=None, ge=-180, le=180),
    max_lon: float | None = Query(default=None, ge=-180, le=180),
    since: str | None = Query(default=None),
) -> JSONResponse:
    """Return displayable reports as a GeoJSON FeatureCollection.

    Reports are read from the given ``zip_codes`` partitions, or from the
    derived grid partitions covering the bounds when no zip codes are given.
    """
    from noisemap.main import get_service

    bounds = None
    bound_values = (min_lat, max_lat, min_lon, max_lon)
    if any(v is not None for v in bound_values):
        if any(v is None for v in bound_values):
            return _error(422, "min_lat, max_lat, min_lon and max_lon go together")
        bounds = MapBounds(min_lat=min_lat, max_lat=max_lat, min_lon=min_lon, max_lon=max_lon)

    since_dt = None
    if since:
        since_dt = parse_timestamp(since)
        if since_dt is None:
            return _error(422, "since must be an ISO 8601 timestamp")

    partitions = [z.strip() for z in (zip_codes or "").split(",") if z.strip()]
    if not partitions:
        if bounds is None:
            return _error(422, "zip_codes or bounds are required")
        partitions = _grid_partitions(bounds)
        if partitions is None:
            return _error(422, "bounds too large, pass zip_codes")

    reports = await get_service().list_reports(partitions, bounds=bounds, since=since_dt)
    geojson = {
        "type": "FeatureCollection",
        "features": [r.to_geojson_feature() for r in reports],
    }
    return JSONResponse(content=geojson, media_type="application/geo+json")


@router.get("/reports/{report_id}")
async def get_report(report_id: str, request: Request) -> JSONResponse:
    from noisemap.main import get_service

    report = await get_service().get_report(report_id)
    if report is None:
        return _error(404, "report not found")
    return JSONResponse(content=_report_to_detail(report, _acting_user(request)))


@router.get("/reports/{report_id}/comments")
async def list_comments(report_id: str) -> JSONResponse:
    from noisemap.main import get_service

    comments = await get_service().list_comments(report_id)
    return JSONResponse(content={"comments": [_comment_to_detail(c) for c in comments]})


@router.post("/reports/{report_id}/comments")
async def add_comment(report_id: str, request: Request) -> JSONResponse:
    """Append a comment. The thread keeps only the most recent entries."""
    from noisemap.main import get_config, get_service

    user = _acting_user(request)
    if user is None:
        return _error(401, "user not authenticated")

    body = await _read_json(request)
    if body is None:
        return _error(400, "invalid JSON")
    text = str(body.get("text") or "").strip()
    if not text:
        return _error(422, "text is required")
    if len(text) > get_config().limits.max_comment_length:
        return _error(422, "comment too long")

    service = get_service()
    if not await service.add_comment(report_id, text, user):
        return _error(404, "report not found")
    comments = await service.list_comments(report_id)
    return JSONResponse(
        content={"comments": [_comment_to_detail(c) for c in comments]},
        status_code=201,
    )


@router.put("/reports/{report_id}/comments/{comment_id}")
async def edit_comment(report_id: str, comment_id: str, request: Request) -> JSONResponse:
    from noisemap.main import get_config, get_service

    user = _acting_user(request)
    if user is None:
        return _error(401, "user not authenticated")

    body = await _read_json(request)
    if body is None:
        return _error(400, "invalid JSON")
    text = str(body.get("text") or "").strip()
    if not text:
        return _error(422, "text is required")
    if len(text) > get_config().limits.max_comment_length:
        return _error(422, "comment too long")

    if not await get_service().edit_comment(report_id, comment_id, text, user):
        return _error(404, "comment not found or not yours")
    return JSONResponse(content={"edited": True})


async def _upvote_response(report_id: str, request: Request, *, add: bool) -> JSONResponse:
    from noisemap.main import get_service

    user = _acting_user(request)
    if user is None:
        return _error(401, "user not authenticated")

    service = get_service()
    try:
        if add:
            report = await service.upvote(report_id, user)
        else:
            report = await service.remove_upvote(report_id, user)
    except ConcurrencyError as exc:
        return _error(409, str(exc))
    if report is None:
        return _error(404, "report not found")
    return JSONResponse(content={
        "upvotes": report.upvotes,
        "has_user_upvoted": report.has_upvoted(user.user_id),
    })


@router.post("/reports/{report_id}/upvote")
async def upvote_report(report_id: str, request: Request) -> JSONResponse:
    """Upvote a report. Upvoting twice counts once."""
    return await _upvote_response(report_id, request, add=True)


@router.delete("/reports/{report_id}/upvote")
async def remove_upvote(report_id: str, request: Request) -> JSONResponse:
    return await _upvote_response(report_id, request, add=False)
