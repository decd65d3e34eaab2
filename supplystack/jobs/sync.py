"""Material synchronization job.

``SyncOrchestrator`` runs one sync: categories are processed strictly in
order, every status change is written before the next step starts, and any
failure outside the per-category handling ends the sync as ``failed``.
``SyncSupervisor`` owns the background tasks, keyed by sync id, and
``SyncService`` is the entry point used by the API and the scheduler.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import uuid
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from supplystack.db.session import create_engine_from_env
from supplystack.ingest import find_category, load_categories
from supplystack.ingest.firecrawl import ExtractionClient
from supplystack.ingest.models import Category, Material, RawRecord
from supplystack.ingest.normalize import DEFAULT_SOURCE, DEFAULT_VENDOR, InvalidRecordError, normalize
from supplystack.logic.errors import ExtractionError, InvalidStateError, StorageError, ValidationError
from supplystack.logic.events import EventLog
from supplystack.logic.materials import upsert_materials
from supplystack.logic.status import COMPLETED, COMPLETED_NO_DATA, SyncStatus, SyncStatusTracker
from supplystack.utils.dates import utc_timestamp

logger = logging.getLogger(__name__)

ITEMS_PER_CATEGORY = int(os.environ.get("SYNC_ITEMS_PER_CATEGORY", 10))

T = TypeVar("T")


class MaterialSource(Protocol):
    async def fetch_category_materials(self, category: Category, limit: int = ...) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[], MaterialSource]


def validate_sync_id(sync_id: str) -> str:
    try:
        return str(uuid.UUID(str(sync_id)))
    except ValueError as exc:
        raise ValidationError("Invalid sync ID format") from exc


class SyncOrchestrator:
    def __init__(
        self,
        engine: Engine,
        client: MaterialSource,
        *,
        categories: Sequence[Category] | None = None,
        tracker: SyncStatusTracker | None = None,
        events: EventLog | None = None,
        limit: int = ITEMS_PER_CATEGORY,
        source: str = DEFAULT_SOURCE,
        vendor: str = DEFAULT_VENDOR,
    ) -> None:
        self.engine = engine
        self.client = client
        self.categories = list(categories) if categories is not None else load_categories()
        self.tracker = tracker or SyncStatusTracker(engine)
        self.events = events or EventLog(engine)
        self.limit = limit
        self.source = source
        self.vendor = vendor

    async def run_sync(self, sync_id: str) -> None:
        """Run the sync to a terminal status; never raises except on task cancellation."""
        try:
            await self._run(sync_id)
        except asyncio.CancelledError:
            await self._record_failure(sync_id, "Sync task was cancelled")
            raise
        except Exception as exc:
            logger.exception("Sync %s failed", sync_id)
            await self._record_failure(sync_id, str(exc) or exc.__class__.__name__)
        finally:
            await self.client.close()

    async def _run(self, sync_id: str) -> None:
        if not await self._db(self.tracker.start, sync_id):
            logger.info("Sync %s is no longer pending; not starting", sync_id)
            return
        total = len(self.categories)
        written: set[str] = set()
        results: dict[str, int] = {}
        errors: dict[str, str] = {}
        logger.info("Sync %s started for %s categories", sync_id, total)

        for index, category in enumerate(self.categories):
            if await self._stopped(sync_id):
                logger.info("Sync %s canceled before %s", sync_id, category.slug)
                return
            await self._db(
                self.tracker.advance,
                sync_id,
                {"current_category": category.slug, "progress": round(index / total * 100)},
            )
            try:
                records = await self.client.fetch_category_materials(category, self.limit)
            except ExtractionError as exc:
                await self._category_failed(sync_id, category, exc, errors)
                continue
            if await self._stopped(sync_id):
                logger.info("Sync %s canceled during %s; discarding %s records", sync_id, category.slug, len(records))
                return
            materials = self._normalize(category, records)
            try:
                count = await self._db(upsert_materials, self.engine, materials)
            except StorageError as exc:
                await self._category_failed(sync_id, category, exc, errors)
                continue
            written.update(material.identifier for material in materials)
            results[category.slug] = count
            logger.info("Synced %s %s materials", count, category.slug)
            await self._db(
                self.tracker.advance,
                sync_id,
                {"category_results": dict(results), "materials_processed": len(written)},
            )

        status = COMPLETED if written else COMPLETED_NO_DATA
        if not await self._db(self.tracker.complete, sync_id, status, len(written)):
            return
        logger.info("Sync %s finished as %s with %s materials", sync_id, status, len(written))
        await self._db(
            self.events.record,
            "sync_completed",
            f"Synced {len(written)} materials from {self.source}",
            metadata={"sync_id": sync_id, "total_materials": len(written), "category_errors": errors},
        )

    def _normalize(self, category: Category, records: Sequence[RawRecord]) -> list[Material]:
        synced_at = utc_timestamp()
        materials: list[Material] = []
        for record in records:
            try:
                materials.append(
                    normalize(record, category, vendor=self.vendor, source=self.source, synced_at=synced_at)
                )
            except InvalidRecordError as exc:
                logger.warning("Skipping %s record: %s", category.slug, exc)
        return materials

    async def _category_failed(
        self, sync_id: str, category: Category, exc: Exception, errors: dict[str, str]
    ) -> None:
        logger.warning("Error syncing %s materials for sync %s: %s", category.slug, sync_id, exc)
        errors[category.slug] = str(exc)
        await self._db(self.tracker.advance, sync_id, {"category_errors": dict(errors)})
        await self._db(
            self.events.record,
            "sync_category_error",
            f"Error syncing {category.slug} materials",
            severity="error",
            metadata={"category": category.slug, "sync_id": sync_id, "error": str(exc)},
        )

    async def _stopped(self, sync_id: str) -> bool:
        status: SyncStatus = await self._db(self.tracker.get_by_id, sync_id)
        return status.is_terminal

    async def _record_failure(self, sync_id: str, message: str) -> None:
        try:
            marked = await self._db(self.tracker.fail, sync_id, message)
        except Exception:
            logger.exception("Could not mark sync %s as failed", sync_id)
            return
        if marked:
            await self._db(
                self.events.record,
                "sync_failed",
                f"Failed to sync materials from {self.source}",
                severity="error",
                metadata={"sync_id": sync_id, "error": message},
            )

    async def _db(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, *args, **kwargs))


class SyncSupervisor:
    """Spawns orchestrator tasks and keeps a handle per sync id until they finish."""

    def __init__(
        self,
        engine: Engine,
        client_factory: ClientFactory = ExtractionClient,
        *,
        categories: Sequence[Category] | None = None,
        limit: int = ITEMS_PER_CATEGORY,
    ) -> None:
        self.engine = engine
        self.client_factory = client_factory
        self.categories = categories
        self.limit = limit
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def start(self, sync_id: str, categories: Sequence[Category] | None = None) -> asyncio.Task[None]:
        orchestrator = SyncOrchestrator(
            self.engine,
            self.client_factory(),
            categories=categories if categories is not None else self.categories,
            limit=self.limit,
        )
        task = asyncio.get_running_loop().create_task(
            self._supervise(sync_id, orchestrator), name=f"sync-{sync_id}"
        )
        self._tasks[sync_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(sync_id, None))
        return task

    def running(self) -> list[str]:
        return sorted(self._tasks)

    async def wait(self, sync_id: str) -> None:
        task = self._tasks.get(sync_id)
        if task is not None:
            await task

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _supervise(self, sync_id: str, orchestrator: SyncOrchestrator) -> None:
        try:
            await orchestrator.run_sync(sync_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Sync task %s escaped its own error handling", sync_id)
            try:
                await asyncio.get_running_loop().run_in_executor(
                    None, SyncStatusTracker(self.engine).fail, sync_id, str(exc) or exc.__class__.__name__
                )
            except StorageError:
                logger.exception("Could not mark sync %s as failed", sync_id)


class SyncService:
    def __init__(
        self,
        engine: Engine,
        supervisor: SyncSupervisor,
        *,
        source: str = DEFAULT_SOURCE,
        categories: Sequence[Category] | None = None,
    ) -> None:
        self.tracker = SyncStatusTracker(engine)
        self.supervisor = supervisor
        self.source = source
        self.categories = list(categories) if categories is not None else load_categories()

    async def trigger_sync(self, category: str | None = None, *, user_id: str | None = None) -> dict[str, str]:
        """Create a pending sync and start it in the background; returns immediately."""
        selected: list[Category] | None = None
        if category:
            match = find_category(category, self.categories)
            if match is None:
                raise ValidationError(f"Unknown category: {category}")
            selected = [match]
        metadata = {"triggered_by": user_id or "system", "initial_timestamp": utc_timestamp()}
        sync_id = self.tracker.create(
            self.source, metadata, category=selected[0].label if selected else None
        )
        self.supervisor.start(sync_id, categories=selected if selected else self.categories)
        return {"sync_id": sync_id}

    def check_sync_status(self, sync_id: str) -> SyncStatus:
        return self.tracker.get_by_id(validate_sync_id(sync_id))

    def cancel_sync(self, sync_id: str) -> dict[str, Any]:
        try:
            self.tracker.cancel(validate_sync_id(sync_id))
        except InvalidStateError as exc:
            return {"success": False, "message": str(exc)}
        return {"success": True, "message": "Sync canceled successfully"}

    def get_latest_sync_status(self) -> SyncStatus | None:
        return self.tracker.get_latest()


async def run_scheduled_sync() -> str:
    load_dotenv()
    engine = create_engine_from_env()
    sync_id = SyncStatusTracker(engine).create(
        DEFAULT_SOURCE, {"triggered_by": "schedule", "initial_timestamp": utc_timestamp()}
    )
    await SyncOrchestrator(engine, ExtractionClient()).run_sync(sync_id)
    return sync_id


if __name__ == "__main__":
    asyncio.run(run_scheduled_sync())
