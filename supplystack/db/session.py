"""Database engine helpers."""

from __future__ import annotations

import json
import os
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine


DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/supplystack"


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_engine(url, pool_pre_ping=True, future=True)


def json_param(conn: Connection, name: str) -> str:
    """Bind placeholder for a JSON column on the connection's dialect."""
    if conn.dialect.name == "postgresql":
        return f"CAST(:{name} AS JSONB)"
    return f":{name}"


def dump_json(value: Any) -> str:
    return json.dumps(value or {}, sort_keys=True)


def load_json(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)
