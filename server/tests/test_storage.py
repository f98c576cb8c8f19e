"""Tests for report stores and the stored record format."""

from __future__ import annotations

import json

import pytest

from conftest import make_report
from noisemap.core.models import Report
from noisemap.storage.base import ConcurrencyError, ReportExistsError, ReportNotFoundError
from noisemap.storage.file_store import FileReportStore
from noisemap.storage.memory_store import InMemoryReportStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryReportStore()
    return FileReportStore(base_dir=tmp_path / "reports")


@pytest.mark.asyncio
async def test_create_assigns_identity(store):
    report = await store.create(make_report())

    assert report.id
    assert report.etag
    assert report.report_date is not None
    fetched = await store.fetch_by_id(report.id)
    assert fetched.latitude == 40.0
    assert fetched.noise_type == "Construction"


@pytest.mark.asyncio
async def test_create_keeps_preassigned_id(store):
    report = await store.create(make_report(id="fixed-id"))
    assert report.id == "fixed-id"
    with pytest.raises(ReportExistsError):
        await store.create(make_report(id="fixed-id"))


@pytest.mark.asyncio
async def test_fetch_by_partition(store):
    await store.create(make_report(partition_key="10001"))
    await store.create(make_report(partition_key="10001"))
    await store.create(make_report(partition_key="10002"))

    assert len(await store.fetch_by_partition("10001")) == 2
    assert len(await store.fetch_by_partition("10002")) == 1
    assert await store.fetch_by_partition("99999") == []


@pytest.mark.asyncio
async def test_fetched_reports_are_copies(store):
    created = await store.create(make_report())
    fetched = await store.fetch_by_id(created.id)
    fetched.merged_count = 42

    again = await store.fetch_by_id(created.id)
    assert again.merged_count == 0


@pytest.mark.asyncio
async def test_update_overwrites(store):
    created = await store.create(make_report())
    report = await store.fetch_by_id(created.id)
    report.add_upvote("u1")
    report.comments.append("hi", "bob", "u2")
    await store.update(report)

    fetched = await store.fetch_by_id(created.id)
    assert fetched.upvotes == 1
    assert [c.text for c in fetched.comments] == ["hi"]


@pytest.mark.asyncio
async def test_stale_update_rejected(store):
    created = await store.create(make_report())
    first = await store.fetch_by_id(created.id)
    second = await store.fetch_by_id(created.id)

    await store.update(first)
    with pytest.raises(ConcurrencyError):
        await store.update(second)


@pytest.mark.asyncio
async def test_update_missing_report(store):
    with pytest.raises(ReportNotFoundError):
        await store.update(make_report(id="ghost", etag="x"))


@pytest.mark.asyncio
async def test_file_store_reloads_from_disk(tmp_path):
    base = tmp_path / "reports"
    created = await FileReportStore(base).create(make_report())

    reopened = FileReportStore(base)
    fetched = await reopened.fetch_by_id(created.id)
    assert fetched is not None
    assert fetched.description == "jackhammer noise"


@pytest.mark.asyncio
async def test_file_store_skips_corrupt_file(tmp_path):
    store = FileReportStore(tmp_path / "reports")
    await store.create(make_report())
    (tmp_path / "reports" / "10001" / "broken.json").write_text("{oops")

    assert len(await store.fetch_by_partition("10001")) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("NoiseLevel", None),
    ("Latitude", "x"),
    ("MergedCount", "many"),
])
async def test_file_store_skips_record_with_bad_field(tmp_path, field, value):
    store = FileReportStore(tmp_path / "reports")
    healthy = await store.create(make_report())
    damaged = await store.create(make_report(description="concrete saw"))

    path = tmp_path / "reports" / "10001" / f"{damaged.id}.json"
    record = json.loads(path.read_text())
    record[field] = value
    path.write_text(json.dumps(record))

    reports = await store.fetch_by_partition("10001")
    assert [r.id for r in reports] == [healthy.id]
    assert await store.fetch_by_id(damaged.id) is None


def test_record_blobs_are_text():
    report = make_report(id="r1", categories=["Construction", "Drilling"])
    report.add_upvote("u1")
    report.comments.append("hello", "alice", "u1")

    record = report.to_record()

    assert isinstance(record["Categories"], str)
    assert isinstance(record["UpvotedBy"], str)
    assert isinstance(record["Comments"], str)
    assert json.loads(record["Categories"]) == ["Construction", "Drilling"]
    assert record["Upvotes"] == 1


def test_corrupt_blobs_decode_to_empty():
    record = make_report(id="r1").to_record()
    record["Categories"] = "not json"
    record["UpvotedBy"] = '{"u1": true}'
    record["Comments"] = "[[["

    report = Report.from_record(record)

    assert report.categories == []
    assert report.upvoted_by == []
    assert len(report.comments) == 0


def test_duplicate_upvoters_collapse_on_read():
    record = make_report(id="r1").to_record()
    record["UpvotedBy"] = '["u1", "u1", "u2"]'

    report = Report.from_record(record)
    assert report.upvotes == 2


def test_upvote_idempotent_on_model():
    report = make_report()
    assert report.add_upvote("u1") is True
    assert report.add_upvote("u1") is False
    assert report.upvotes == 1
