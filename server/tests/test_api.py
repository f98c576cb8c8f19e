"""Tests for the noise report API endpoints."""

from __future__ import annotations

import json

import pytest

ALICE = {"x-user-id": "user-alice", "x-user-name": "alice"}
BOB = {"x-user-id": "user-bob", "x-user-name": "bob"}


def _report_payload(**overrides) -> dict:
    payload = {
        "latitude": 40.0000,
        "longitude": -74.0000,
        "zip_code": "10001",
        "noise_type": "Construction",
        "noise_level": 7,
        "blast_radius": "Medium",
        "description": "jackhammer noise",
    }
    payload.update(overrides)
    return payload


async def _submit(client, headers=ALICE, **overrides):
    return await client.post(
        "/api/v1/reports",
        content=json.dumps(_report_payload(**overrides)),
        headers={"content-type": "application/json", **headers},
    )


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "uptime_seconds" in data
    assert "disk_free_gb" in data


@pytest.mark.asyncio
async def test_stats_empty(client):
    resp = await client.get("/api/v1/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["reports_received"] == 0
    assert data["active_users"]["total"] == 0


@pytest.mark.asyncio
async def test_config_endpoint(client):
    resp = await client.get("/api/v1/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["noise_categories"] == ["Fireworks", "Protests", "Sports", "Construction"]
    assert {"name": "Medium", "km": 0.5} in data["blast_radius_tiers"]
    assert data["comment_limit"] == 5


@pytest.mark.asyncio
async def test_submit_then_merge(client):
    resp = await _submit(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["merged"] is False
    first = data["report"]
    assert first["is_merged"] is False
    assert len(first["comments"]) == 1
    assert first["submitted_by"] == "alice"

    # ~0.33 km north, within the Medium radius of the first report.
    resp = await _submit(client, headers=BOB, latitude=40.0030, blast_radius="Small",
                         description="drilling all morning")
    assert resp.status_code == 201
    data = resp.json()
    assert data["merged"] is True
    target = data["report"]
    assert target["id"] == first["id"]
    assert target["merged_count"] == 1
    assert len(target["comments"]) == 2
    assert target["comments"][-1]["is_from_merge"] is True
    assert target["display_text"] == "drilling all morning"

    merged_id = target["comments"][-1]["original_report_id"]
    resp = await client.get(f"/api/v1/reports/{merged_id}")
    assert resp.status_code == 200
    absorbed = resp.json()
    assert absorbed["is_merged"] is True
    assert absorbed["merged_into_id"] == first["id"]


@pytest.mark.asyncio
async def test_submit_requires_user(client):
    resp = await _submit(client, headers={})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"description": ""},
    {"latitude": 0, "longitude": 0},
    {"latitude": None},
    {"longitude": None},
    {"latitude": "north"},
    {"noise_level": 11},
    {"noise_level": "loud"},
    {"noise_type": "Jazz"},
])
async def test_submit_validation(client, overrides):
    resp = await _submit(client, **overrides)
    assert resp.status_code == 422
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_submit_with_one_coordinate_rejected(client):
    payload = _report_payload()
    del payload["latitude"]
    resp = await client.post(
        "/api/v1/reports",
        content=json.dumps(payload),
        headers={"content-type": "application/json", **ALICE},
    )
    assert resp.status_code == 422

    resp = await client.get("/api/v1/reports", params={"zip_codes": "10001"})
    assert resp.json()["features"] == []


@pytest.mark.asyncio
async def test_submit_defaults_category(client):
    resp = await _submit(client, noise_type=None)
    assert resp.status_code == 201
    report = resp.json()["report"]
    assert report["noise_type"] == "Other"
    assert report["categories"] == ["Other"]


@pytest.mark.asyncio
async def test_invalid_json(client):
    resp = await client.post(
        "/api/v1/reports",
        content=b"not json at all",
        headers={"content-type": "application/json", **ALICE},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_list_reports_geojson(client):
    await _submit(client)
    await _submit(client, headers=BOB)  # merges, hidden from the map
    await _submit(client, headers=BOB, noise_type="Fireworks")

    resp = await client.get("/api/v1/reports", params={"zip_codes": "10001"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["type"] == "FeatureCollection"
    assert len(data["features"]) == 2
    types = {f["properties"]["noise_type"] for f in data["features"]}
    assert types == {"Construction", "Fireworks"}


@pytest.mark.asyncio
async def test_list_reports_bounds_filter(client):
    await _submit(client)
    await _submit(client, latitude=40.05, noise_type="Sports")

    resp = await client.get("/api/v1/reports", params={
        "zip_codes": "10001",
        "min_lat": 39.99, "max_lat": 40.01, "min_lon": -74.01, "max_lon": -73.99,
    })
    features = resp.json()["features"]
    assert [f["properties"]["noise_type"] for f in features] == ["Construction"]


@pytest.mark.asyncio
async def test_list_reports_by_derived_grid(client):
    await _submit(client, zip_code="")

    resp = await client.get("/api/v1/reports", params={
        "min_lat": 39.95, "max_lat": 40.05, "min_lon": -74.05, "max_lon": -73.95,
    })
    assert resp.status_code == 200
    assert len(resp.json()["features"]) == 1


@pytest.mark.asyncio
async def test_list_reports_needs_scope(client):
    resp = await client.get("/api/v1/reports")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_missing_report(client):
    resp = await client.get("/api/v1/reports/does-not-exist")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_comments_flow(client):
    report_id = (await _submit(client)).json()["report"]["id"]

    for i in range(6):
        resp = await client.post(
            f"/api/v1/reports/{report_id}/comments",
            content=json.dumps({"text": f"update {i}"}),
            headers={"content-type": "application/json", **BOB},
        )
        assert resp.status_code == 201

    resp = await client.get(f"/api/v1/reports/{report_id}/comments")
    comments = resp.json()["comments"]
    assert len(comments) == 5
    assert [c["text"] for c in comments] == [f"update {i}" for i in range(1, 6)]


@pytest.mark.asyncio
async def test_comment_on_missing_report(client):
    resp = await client.post(
        "/api/v1/reports/nope/comments",
        content=json.dumps({"text": "hello"}),
        headers={"content-type": "application/json", **BOB},
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_comments_of_missing_report_are_empty(client):
    resp = await client.get("/api/v1/reports/nope/comments")
    assert resp.status_code == 200
    assert resp.json() == {"comments": []}


@pytest.mark.asyncio
async def test_edit_own_comment_only(client):
    report = (await _submit(client)).json()["report"]
    comment_id = report["comments"][0]["id"]
    url = f"/api/v1/reports/{report['id']}/comments/{comment_id}"

    resp = await client.put(url, content=json.dumps({"text": "hijacked"}),
                            headers={"content-type": "application/json", **BOB})
    assert resp.status_code == 404

    resp = await client.put(url, content=json.dumps({"text": "jackhammer, since 7am"}),
                            headers={"content-type": "application/json", **ALICE})
    assert resp.status_code == 200

    comments = (await client.get(f"/api/v1/reports/{report['id']}/comments")).json()["comments"]
    assert comments[0]["text"] == "jackhammer, since 7am"
    assert comments[0]["is_edited"] is True


@pytest.mark.asyncio
async def test_upvote_twice_counts_once(client):
    report_id = (await _submit(client)).json()["report"]["id"]

    for _ in range(2):
        resp = await client.post(f"/api/v1/reports/{report_id}/upvote", headers=BOB)
        assert resp.status_code == 200

    data = resp.json()
    assert data["upvotes"] == 1
    assert data["has_user_upvoted"] is True

    resp = await client.delete(f"/api/v1/reports/{report_id}/upvote", headers=BOB)
    assert resp.json() == {"upvotes": 0, "has_user_upvoted": False}


@pytest.mark.asyncio
async def test_upvote_missing_report(client):
    resp = await client.post("/api/v1/reports/nope/upvote", headers=BOB)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stats_after_activity(client):
    await _submit(client)
    await _submit(client, headers=BOB)
    await _submit(client, description="")

    data = (await client.get("/api/v1/stats")).json()
    assert data["reports_received"] == 2
    assert data["reports_created"] == 1
    assert data["reports_merged"] == 1
    assert data["reports_rejected"] == 1
    assert data["active_users"]["reporting"] == 2
