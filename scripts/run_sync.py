"""Trigger a material sync in-process and print status updates until it finishes."""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from supplystack.db.session import create_engine_from_env
from supplystack.jobs.poller import DEFAULT_INTERVAL_MS, ServiceStatusFetcher, SyncStatusPoller
from supplystack.jobs.sync import SyncService, SyncSupervisor
from supplystack.logic.status import SyncStatus


def print_status(status: SyncStatus) -> None:
    current = status.metadata.get("current_category") or "-"
    print(f"{status.sync_id} {status.status:<18} {status.progress:>3}% category={current}")


async def run(category: str | None, interval_ms: int) -> SyncStatus:
    engine = create_engine_from_env()
    supervisor = SyncSupervisor(engine)
    service = SyncService(engine, supervisor)
    sync_id = (await service.trigger_sync(category, user_id="cli"))["sync_id"]
    handle = SyncStatusPoller(ServiceStatusFetcher(service)).watch(sync_id, print_status, interval_ms=interval_ms)
    try:
        await supervisor.wait(sync_id)
        await handle.wait()
    finally:
        handle.stop()
        await supervisor.shutdown()
    return service.check_sync_status(sync_id)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--category", help="sync a single category slug")
    parser.add_argument("--interval-ms", type=int, default=DEFAULT_INTERVAL_MS)
    args = parser.parse_args()
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    final = asyncio.run(run(args.category, args.interval_ms))
    print(f"Sync {final.sync_id} finished as {final.status} with {final.materials_count or 0} materials")


if __name__ == "__main__":
    main()
