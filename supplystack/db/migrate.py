"""Apply schema.sql to the configured database."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterator

from dotenv import load_dotenv
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from supplystack.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")
REQUIRED_TABLES = ("materials", "sync_status", "saved_searches", "system_logs", "user_preferences")


def run_migrations(engine: Engine) -> list[str]:
    """Create missing tables and indexes; returns the tables that were new."""
    existing = set(inspect(engine).get_table_names())
    with engine.begin() as conn:
        for stmt in split_statements(SCHEMA_PATH.read_text()):
            conn.execute(text(stmt))
    created = [name for name in REQUIRED_TABLES if name not in existing]
    logger.info("Schema applied; new tables: %s", ", ".join(created) or "none")
    return created


def split_statements(sql: str) -> Iterator[str]:
    statement: list[str] = []
    for line in sql.splitlines():
        if not line.strip() or line.lstrip().startswith("--"):
            continue
        statement.append(line)
        if line.rstrip().endswith(";"):
            yield "\n".join(statement)
            statement = []
    if statement:
        yield "\n".join(statement)


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    try:
        run_migrations(create_engine_from_env())
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
