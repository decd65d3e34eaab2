"""Cooperative polling of a sync's status until it reaches a terminal state."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Mapping

import httpx

from supplystack.jobs.sync import SyncService
from supplystack.logic.status import SyncStatus
from supplystack.utils.dates import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 3000

StatusFetcher = Callable[[str], Awaitable[SyncStatus]]
UpdateCallback = Callable[[SyncStatus], Any]
ErrorCallback = Callable[[Exception], Any]


class PollHandle:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def stop(self) -> None:
        """Stop polling; the sync itself keeps running."""
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class SyncStatusPoller:
    def __init__(self, fetch: StatusFetcher) -> None:
        self.fetch = fetch

    def watch(
        self,
        sync_id: str,
        on_update: UpdateCallback,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        on_error: ErrorCallback | None = None,
    ) -> PollHandle:
        if interval_ms < 0:
            raise ValueError("interval_ms must not be negative")
        task = asyncio.get_running_loop().create_task(
            self._poll(sync_id, on_update, interval_ms / 1000, on_error), name=f"poll-{sync_id}"
        )
        return PollHandle(task)

    async def _poll(
        self,
        sync_id: str,
        on_update: UpdateCallback,
        interval: float,
        on_error: ErrorCallback | None,
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                status = await self.fetch(sync_id)
            except Exception as exc:
                logger.warning("Polling sync %s failed: %s", sync_id, exc)
                await _report(sync_id, exc, on_error)
                continue
            try:
                await _maybe_await(on_update(status))
            except Exception as exc:
                logger.warning("Status callback for sync %s failed: %s", sync_id, exc)
                await _report(sync_id, exc, on_error)
            if status.is_terminal:
                logger.info("Sync %s reached %s; polling stopped", sync_id, status.status)
                return


class ServiceStatusFetcher:
    """Reads status in-process through ``SyncService``."""

    def __init__(self, service: SyncService) -> None:
        self.service = service

    async def __call__(self, sync_id: str) -> SyncStatus:
        return await asyncio.get_running_loop().run_in_executor(None, self.service.check_sync_status, sync_id)


class ApiStatusFetcher:
    """Reads status from the HTTP API (``GET /sync/{sync_id}``)."""

    def __init__(self, base_url: str, *, session: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def __call__(self, sync_id: str) -> SyncStatus:
        response = await self.session.get(f"{self.base_url}/sync/{sync_id}")
        response.raise_for_status()
        return status_from_payload(response.json())


def status_from_payload(payload: Mapping[str, Any]) -> SyncStatus:
    return SyncStatus(
        sync_id=payload["syncId"],
        status=payload["status"],
        source=payload["source"],
        category=payload.get("category"),
        started_at=parse_timestamp(payload.get("startedAt")),
        completed_at=parse_timestamp(payload.get("completedAt")),
        materials_count=payload.get("materialsCount"),
        error_message=payload.get("errorMessage"),
        metadata=dict(payload.get("metadata") or {}),
    )


async def _report(sync_id: str, exc: Exception, on_error: ErrorCallback | None) -> None:
    if on_error is None:
        return
    try:
        await _maybe_await(on_error(exc))
    except Exception:
        logger.exception("Error callback for sync %s failed", sync_id)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result
