"""Audit trail of sync events in ``system_logs``."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from supplystack.db.session import dump_json, json_param
from supplystack.utils.dates import utc_timestamp

logger = logging.getLogger(__name__)


class EventLog:
    """Best-effort writer; a failed write is logged and never raised."""

    def __init__(self, engine: Engine, *, source: str = "sync") -> None:
        self.engine = engine
        self.source = source

    def record(
        self,
        event_type: str,
        message: str,
        *,
        severity: str = "info",
        metadata: Mapping[str, Any] | None = None,
        user_id: str | None = None,
    ) -> bool:
        details = {
            "message": message,
            "severity": severity,
            "source": self.source,
            "metadata": dict(metadata or {}),
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        f"""
                        INSERT INTO system_logs (event_type, details, user_id, created_at)
                        VALUES (:event_type, {json_param(conn, "details")}, :user_id, :created_at)
                        """
                    ),
                    {
                        "event_type": event_type,
                        "details": dump_json(details),
                        "user_id": user_id,
                        "created_at": utc_timestamp(),
                    },
                )
        except SQLAlchemyError as exc:
            logger.warning("Could not record %s event: %s", event_type, exc)
            return False
        return True
