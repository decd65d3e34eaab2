"""Per-user display and notification preferences, one row per user."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from supplystack.db.session import dump_json, json_param, load_json
from supplystack.logic.errors import ValidationError
from supplystack.logic.status import storage_errors
from supplystack.utils.dates import parse_timestamp, utc_timestamp


def save_preferences(engine: Engine, user_id: str, preferences: Mapping[str, Any]) -> dict[str, Any]:
    """Replace the stored preferences for ``user_id``."""
    if not isinstance(preferences, Mapping):
        raise ValidationError("Preferences must be an object")
    updated_at = utc_timestamp()
    with storage_errors("save preferences"), engine.begin() as conn:
        conn.execute(
            text(
                f"""
                INSERT INTO user_preferences (user_id, preferences, updated_at)
                VALUES (:user_id, {json_param(conn, "preferences")}, :updated_at)
                ON CONFLICT (user_id) DO UPDATE SET
                preferences = EXCLUDED.preferences,
                updated_at = EXCLUDED.updated_at
                """
            ),
            {"user_id": user_id, "preferences": dump_json(dict(preferences)), "updated_at": updated_at},
        )
    return {"user_id": user_id, "preferences": dict(preferences), "updated_at": parse_timestamp(updated_at)}


def get_preferences(engine: Engine, user_id: str) -> dict[str, Any]:
    """Stored preferences, or empty ones for a user who never saved any."""
    with storage_errors("read preferences"), engine.connect() as conn:
        row = conn.execute(
            text("SELECT user_id, preferences, updated_at FROM user_preferences WHERE user_id = :user_id"),
            {"user_id": user_id},
        ).mappings().first()
    if row is None:
        return {"user_id": user_id, "preferences": {}, "updated_at": None}
    return {
        "user_id": row["user_id"],
        "preferences": load_json(row["preferences"]),
        "updated_at": parse_timestamp(row["updated_at"]),
    }
