"""Saved searches per signed-in user."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from supplystack.db.session import dump_json, json_param, load_json
from supplystack.logic.errors import ValidationError
from supplystack.logic.status import storage_errors
from supplystack.utils.dates import parse_timestamp, utc_timestamp


def save_search(engine: Engine, user_id: str, search_query: str, filters: Mapping[str, Any] | None = None) -> dict[str, Any]:
    if not search_query or not search_query.strip():
        raise ValidationError("Search query is required")
    created_at = utc_timestamp()
    with storage_errors("save search"), engine.begin() as conn:
        conn.execute(
            text(
                f"""
                INSERT INTO saved_searches (user_id, search_query, filters, created_at)
                VALUES (:user_id, :search_query, {json_param(conn, "filters")}, :created_at)
                """
            ),
            {
                "user_id": user_id,
                "search_query": search_query.strip(),
                "filters": dump_json(filters),
                "created_at": created_at,
            },
        )
    return {
        "user_id": user_id,
        "search_query": search_query.strip(),
        "filters": dict(filters or {}),
        "created_at": parse_timestamp(created_at),
    }


def list_saved_searches(engine: Engine, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
    with storage_errors("list saved searches"), engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT user_id, search_query, filters, created_at
                FROM saved_searches
                WHERE user_id = :user_id
                ORDER BY created_at DESC, id DESC
                LIMIT :limit
                """
            ),
            {"user_id": user_id, "limit": limit},
        ).mappings().all()
    return [
        {
            "user_id": row["user_id"],
            "search_query": row["search_query"],
            "filters": load_json(row["filters"]),
            "created_at": parse_timestamp(row["created_at"]),
        }
        for row in rows
    ]
