"""Persistence of sync status records."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from supplystack.db.session import dump_json, json_param, load_json
from supplystack.logic.errors import InvalidStateError, NotFoundError, StorageError
from supplystack.utils.dates import parse_timestamp, utc_timestamp

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
COMPLETED_NO_DATA = "completed_no_data"
FAILED = "failed"
CANCELED = "canceled"

ACTIVE_STATUSES = frozenset({PENDING, IN_PROGRESS})
TERMINAL_STATUSES = frozenset({COMPLETED, COMPLETED_NO_DATA, FAILED, CANCELED})
COMPLETION_STATUSES = frozenset({COMPLETED, COMPLETED_NO_DATA})

CANCEL_MESSAGE = "Sync was canceled by user"

_ACTIVE_CLAUSE = "status IN ('pending', 'in_progress')"


@dataclass(slots=True)
class SyncStatus:
    sync_id: str
    status: str
    source: str
    started_at: datetime | None
    category: str | None = None
    completed_at: datetime | None = None
    materials_count: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        if self.status in COMPLETION_STATUSES:
            return 100
        if self.status == PENDING:
            return 0
        try:
            value = int(self.metadata.get("progress") or 0)
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SyncStatus":
        return cls(
            sync_id=str(row["sync_id"]),
            status=row["status"],
            source=row["source"],
            category=row.get("category"),
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            materials_count=row.get("materials_count"),
            error_message=row.get("error_message"),
            metadata=load_json(row.get("metadata")),
        )


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"Failed to {action}: {exc}") from exc


class SyncStatusTracker:
    """CRUD over ``sync_status``; status changes only ever leave pending/in_progress."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, source: str, metadata: Mapping[str, Any] | None = None, *, category: str | None = None) -> str:
        sync_id = str(uuid.uuid4())
        with storage_errors("create sync record"), self.engine.begin() as conn:
            conn.execute(
                text(
                    f"""
                    INSERT INTO sync_status (sync_id, status, source, category, started_at, metadata)
                    VALUES (:sync_id, :status, :source, :category, :started_at, {json_param(conn, "metadata")})
                    """
                ),
                {
                    "sync_id": sync_id,
                    "status": PENDING,
                    "source": source,
                    "category": category,
                    "started_at": utc_timestamp(),
                    "metadata": dump_json(metadata),
                },
            )
        logger.info("Created sync %s for %s", sync_id, source)
        return sync_id

    def start(self, sync_id: str) -> bool:
        """Move a pending sync to in_progress; False if it is no longer pending."""
        with storage_errors("start sync"), self.engine.begin() as conn:
            result = conn.execute(
                text("UPDATE sync_status SET status = :status WHERE sync_id = :sync_id AND status = :pending"),
                {"status": IN_PROGRESS, "sync_id": sync_id, "pending": PENDING},
            )
        return result.rowcount > 0

    def advance(self, sync_id: str, patch: Mapping[str, Any]) -> None:
        """Merge ``patch`` into the record's metadata."""
        with storage_errors("update sync progress"), self.engine.begin() as conn:
            current = conn.execute(
                text("SELECT metadata FROM sync_status WHERE sync_id = :sync_id"),
                {"sync_id": sync_id},
            ).scalar_one_or_none()
            if current is None:
                raise NotFoundError(f"Sync with ID {sync_id} not found")
            merged = {**load_json(current), **patch}
            conn.execute(
                text(
                    f"UPDATE sync_status SET metadata = {json_param(conn, 'metadata')} WHERE sync_id = :sync_id"
                ),
                {"metadata": dump_json(merged), "sync_id": sync_id},
            )

    def complete(self, sync_id: str, status: str, materials_count: int) -> bool:
        if status not in COMPLETION_STATUSES:
            raise ValueError(f"Not a completion status: {status}")
        return self._finish(sync_id, status, materials_count=materials_count)

    def fail(self, sync_id: str, error_message: str) -> bool:
        return self._finish(sync_id, FAILED, error_message=error_message or "Unknown error")

    def cancel(self, sync_id: str) -> SyncStatus:
        if not self._finish(sync_id, CANCELED, error_message=CANCEL_MESSAGE):
            current = self.get_by_id(sync_id)
            raise InvalidStateError(f"Cannot cancel sync in {current.status} state", status=current.status)
        logger.info("Sync %s canceled", sync_id)
        return self.get_by_id(sync_id)

    def get_by_id(self, sync_id: str) -> SyncStatus:
        with storage_errors("read sync status"), self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM sync_status WHERE sync_id = :sync_id"),
                {"sync_id": sync_id},
            ).mappings().first()
        if row is None:
            raise NotFoundError(f"Sync with ID {sync_id} not found")
        return SyncStatus.from_row(row)

    def get_latest(self) -> SyncStatus | None:
        with storage_errors("read latest sync status"), self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM sync_status ORDER BY started_at DESC, id DESC LIMIT 1")
            ).mappings().first()
        return SyncStatus.from_row(row) if row else None

    def _finish(
        self,
        sync_id: str,
        status: str,
        *,
        materials_count: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        with storage_errors(f"mark sync {status}"), self.engine.begin() as conn:
            result = conn.execute(
                text(
                    f"""
                    UPDATE sync_status
                    SET status = :status, completed_at = :completed_at,
                        materials_count = COALESCE(:materials_count, materials_count),
                        error_message = COALESCE(:error_message, error_message)
                    WHERE sync_id = :sync_id AND {_ACTIVE_CLAUSE}
                    """
                ),
                {
                    "status": status,
                    "completed_at": utc_timestamp(),
                    "materials_count": materials_count,
                    "error_message": error_message,
                    "sync_id": sync_id,
                },
            )
        if result.rowcount == 0:
            logger.info("Sync %s not marked %s: no longer active", sync_id, status)
            return False
        return True
