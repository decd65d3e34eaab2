import asyncio
import json

import pytest
from sqlalchemy import text

from supplystack.jobs.sync import SyncOrchestrator, SyncService, SyncSupervisor, validate_sync_id
from supplystack.logic.errors import ExtractionError, NotFoundError, StorageError, ValidationError
from supplystack.logic.materials import search_materials
from supplystack.logic.status import (
    CANCELED,
    COMPLETED,
    COMPLETED_NO_DATA,
    FAILED,
    SyncStatusTracker,
)

from conftest import DRYWALL, LUMBER, FakeSource, product_records


class RecordingTracker(SyncStatusTracker):
    """Tracker that remembers every progress value it was asked to write."""

    def __init__(self, engine):
        super().__init__(engine)
        self.progress = []

    def advance(self, sync_id, patch):
        if "progress" in patch:
            self.progress.append(patch["progress"])
        super().advance(sync_id, patch)


class BrokenTracker(SyncStatusTracker):
    def advance(self, sync_id, patch):
        raise StorageError("Failed to update sync progress: disk I/O error")


def event_types(engine):
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text("SELECT event_type FROM system_logs ORDER BY id"))]


@pytest.mark.asyncio
async def test_sync_completes_with_all_materials(engine, categories):
    tracker = RecordingTracker(engine)
    source = FakeSource({"lumber": product_records("lumber", 3), "drywall": product_records("drywall", 3)})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == COMPLETED
    assert status.materials_count == 6
    assert status.progress == 100
    assert status.metadata["category_results"] == {"lumber": 3, "drywall": 3}
    assert tracker.progress == [0, 50]
    assert source.calls == ["lumber", "drywall"]
    assert source.closed
    assert event_types(engine) == ["sync_completed"]
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM materials")).scalar() == 6


@pytest.mark.asyncio
async def test_progress_is_non_decreasing(engine):
    from supplystack.ingest import load_categories

    categories = load_categories()
    tracker = RecordingTracker(engine)
    source = FakeSource({category.slug: product_records(category.slug, 1) for category in categories})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)
    assert tracker.progress == sorted(tracker.progress)
    assert tracker.progress[0] == 0
    assert all(value < 100 for value in tracker.progress)
    assert tracker.get_by_id(sync_id).progress == 100


@pytest.mark.asyncio
async def test_category_failure_is_contained(engine, categories):
    tracker = SyncStatusTracker(engine)
    source = FakeSource(
        {"drywall": product_records("drywall", 2)},
        errors={"lumber": ExtractionError("Extraction failed: timeout", category="lumber")},
    )
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == COMPLETED
    assert status.materials_count == 2
    assert status.metadata["category_errors"] == {"lumber": "Extraction failed: timeout"}
    assert event_types(engine) == ["sync_category_error", "sync_completed"]


@pytest.mark.asyncio
async def test_upsert_failure_skips_category(engine, categories, monkeypatch):
    from supplystack.jobs import sync as sync_job

    real_upsert = sync_job.upsert_materials

    def flaky_upsert(engine, materials):
        if materials and materials[0].category == LUMBER.label:
            raise StorageError("Failed to upsert materials: database is locked")
        return real_upsert(engine, materials)

    monkeypatch.setattr(sync_job, "upsert_materials", flaky_upsert)
    tracker = SyncStatusTracker(engine)
    source = FakeSource({"lumber": product_records("lumber", 2), "drywall": product_records("drywall", 3)})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == COMPLETED
    assert status.materials_count == 3
    assert status.metadata["category_errors"] == {"lumber": "Failed to upsert materials: database is locked"}
    assert status.metadata["category_results"] == {"drywall": 3}
    assert event_types(engine) == ["sync_category_error", "sync_completed"]
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM materials")).scalar() == 3


@pytest.mark.asyncio
async def test_material_listed_in_two_categories_counts_once(engine, categories):
    tracker = SyncStatusTracker(engine)
    shared = product_records("shared", 3)
    source = FakeSource({"lumber": shared, "drywall": shared})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.materials_count == 3
    assert status.metadata["materials_processed"] == 3
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM materials")).scalar() == 3


@pytest.mark.asyncio
async def test_no_materials_completes_without_data(engine, categories):
    tracker = SyncStatusTracker(engine)
    source = FakeSource(errors={slug: ExtractionError("boom") for slug in ("lumber", "drywall")})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == COMPLETED_NO_DATA
    assert status.materials_count == 0
    assert status.error_message is None


@pytest.mark.asyncio
async def test_invalid_records_are_skipped(engine, categories):
    tracker = SyncStatusTracker(engine)
    records = product_records("lumber", 2) + [{"name": "No id and no url"}]
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, FakeSource({"lumber": records}), categories=categories, tracker=tracker).run_sync(
        sync_id
    )
    assert tracker.get_by_id(sync_id).materials_count == 2


@pytest.mark.asyncio
async def test_tracker_failure_fails_sync(engine, categories):
    tracker = BrokenTracker(engine)
    source = FakeSource({"lumber": product_records("lumber", 3)})
    sync_id = tracker.create("home_depot")
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == FAILED
    assert "disk I/O error" in status.error_message
    assert source.closed
    with engine.connect() as conn:
        details = conn.execute(text("SELECT details FROM system_logs WHERE event_type = 'sync_failed'")).scalar()
    assert json.loads(details)["severity"] == "error"


@pytest.mark.asyncio
async def test_cancel_mid_sync_discards_remaining_categories(engine, categories):
    tracker = SyncStatusTracker(engine)
    sync_id = tracker.create("home_depot")

    def cancel_during_lumber(category):
        if category.slug == "lumber":
            tracker.cancel(sync_id)

    source = FakeSource(
        {"lumber": product_records("lumber", 3), "drywall": product_records("drywall", 3)},
        on_fetch=cancel_during_lumber,
    )
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)

    status = tracker.get_by_id(sync_id)
    assert status.status == CANCELED
    assert source.calls == ["lumber"]
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM materials")).scalar() == 0


@pytest.mark.asyncio
async def test_canceled_before_start_does_nothing(engine, categories):
    tracker = SyncStatusTracker(engine)
    sync_id = tracker.create("home_depot")
    tracker.cancel(sync_id)
    source = FakeSource({"lumber": product_records("lumber", 1)})
    await SyncOrchestrator(engine, source, categories=categories, tracker=tracker).run_sync(sync_id)
    assert source.calls == []
    assert tracker.get_by_id(sync_id).status == CANCELED


def test_validate_sync_id():
    assert validate_sync_id("6F9619FF-8B86-D011-B42D-00CF4FC964FF") == "6f9619ff-8b86-d011-b42d-00cf4fc964ff"
    with pytest.raises(ValidationError, match="Invalid sync ID format"):
        validate_sync_id("not-a-uuid")


def test_service_status_lookups(engine):
    service = SyncService(engine, SyncSupervisor(engine), categories=[LUMBER])
    with pytest.raises(NotFoundError):
        service.check_sync_status("6f9619ff-8b86-d011-b42d-00cf4fc964ff")
    with pytest.raises(ValidationError):
        service.check_sync_status("bogus")
    assert service.get_latest_sync_status() is None


@pytest.mark.asyncio
async def test_trigger_sync_runs_in_background(engine, categories):
    source = FakeSource({"lumber": product_records("lumber", 2), "drywall": product_records("drywall", 1)})
    supervisor = SyncSupervisor(engine, lambda: source, categories=categories)
    service = SyncService(engine, supervisor, categories=categories)

    result = await service.trigger_sync(user_id="user-1")
    sync_id = result["sync_id"]
    assert supervisor.running() == [sync_id]
    await supervisor.wait(sync_id)
    await asyncio.sleep(0)

    status = service.check_sync_status(sync_id)
    assert status.status == COMPLETED
    assert status.materials_count == 3
    assert status.metadata["triggered_by"] == "user-1"
    assert supervisor.running() == []
    assert service.get_latest_sync_status().sync_id == sync_id
    assert [item["identifier"] for item in search_materials(engine, "drywall")["results"]] == ["drywall-0"]


@pytest.mark.asyncio
async def test_trigger_single_category(engine, categories):
    source = FakeSource({"drywall": product_records("drywall", 1)})
    supervisor = SyncSupervisor(engine, lambda: source)
    service = SyncService(engine, supervisor, categories=categories)

    sync_id = (await service.trigger_sync("drywall"))["sync_id"]
    await supervisor.wait(sync_id)
    status = service.check_sync_status(sync_id)
    assert status.category == DRYWALL.label
    assert source.calls == ["drywall"]

    with pytest.raises(ValidationError):
        await service.trigger_sync("unobtainium")


@pytest.mark.asyncio
async def test_cancel_sync_reports_outcome(engine, categories):
    supervisor = SyncSupervisor(engine, lambda: FakeSource())
    service = SyncService(engine, supervisor, categories=categories)
    sync_id = SyncStatusTracker(engine).create("home_depot")

    assert service.cancel_sync(sync_id) == {"success": True, "message": "Sync canceled successfully"}
    outcome = service.cancel_sync(sync_id)
    assert outcome["success"] is False
    assert "canceled" in outcome["message"]
    with pytest.raises(NotFoundError):
        service.cancel_sync("6f9619ff-8b86-d011-b42d-00cf4fc964ff")


@pytest.mark.asyncio
async def test_shutdown_marks_running_sync_failed(engine):
    started = asyncio.Event()

    class SlowSource(FakeSource):
        async def fetch_category_materials(self, category, limit=10):
            started.set()
            await asyncio.sleep(60)
            return []

    supervisor = SyncSupervisor(engine, SlowSource, categories=[LUMBER])
    tracker = SyncStatusTracker(engine)
    sync_id = tracker.create("home_depot")
    supervisor.start(sync_id)
    await started.wait()
    await supervisor.shutdown()

    status = tracker.get_by_id(sync_id)
    assert status.status == FAILED
    assert status.error_message == "Sync task was cancelled"
