"""Material catalog queries and upserts."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from supplystack.db.session import dump_json, json_param, load_json
from supplystack.ingest.models import AVAILABILITY_VALUES, Material
from supplystack.logic.errors import NotFoundError, ValidationError
from supplystack.logic.status import storage_errors
from supplystack.utils.dates import parse_timestamp, utc_timestamp

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

MATERIAL_COLUMNS = (
    "identifier",
    "name",
    "description",
    "price",
    "category",
    "url",
    "image_url",
    "vendor_name",
    "quantity",
    "unit",
    "specifications",
    "availability",
    "source",
    "last_synced",
)


@dataclass(slots=True)
class MaterialFilters:
    query: str | None = None
    category: str | None = None
    vendor: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    availability: str | None = None


def upsert_materials(engine: Engine, materials: Sequence[Material]) -> int:
    """Insert or replace rows keyed by identifier; returns the number of distinct rows written."""
    unique = {material.identifier: material for material in materials}
    if not unique:
        return 0
    with storage_errors("upsert materials"), engine.begin() as conn:
        values = ", ".join(
            json_param(conn, column) if column == "specifications" else f":{column}"
            for column in MATERIAL_COLUMNS
        )
        updates = ",\n".join(
            f"{column} = EXCLUDED.{column}" for column in MATERIAL_COLUMNS if column != "identifier"
        )
        conn.execute(
            text(
                f"""
                INSERT INTO materials ({", ".join(MATERIAL_COLUMNS)})
                VALUES ({values})
                ON CONFLICT (identifier) DO UPDATE SET
                {updates}
                """
            ),
            [_row_params(material) for material in unique.values()],
        )
    logger.debug("Upserted %s materials", len(unique))
    return len(unique)


def search_materials(engine: Engine, query: str, page: int = 1, limit: int = DEFAULT_LIMIT) -> dict[str, Any]:
    if not query or not query.strip():
        raise ValidationError("Search query is required")
    return browse_materials(engine, MaterialFilters(query=query), page=page, limit=limit)


def browse_materials(
    engine: Engine,
    filters: MaterialFilters | None = None,
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
) -> dict[str, Any]:
    _validate_page(page, limit)
    where, params = _where_clause(filters or MaterialFilters())
    with storage_errors("search materials"), engine.connect() as conn:
        total = conn.execute(text(f"SELECT COUNT(*) FROM materials{where}"), params).scalar_one()
        rows = conn.execute(
            text(
                f"""
                SELECT * FROM materials{where}
                ORDER BY last_synced DESC, id DESC
                LIMIT :limit OFFSET :offset
                """
            ),
            {**params, "limit": limit, "offset": (page - 1) * limit},
        ).mappings().all()
    return {
        "results": [_material_from_row(row) for row in rows],
        "pagination": {
            "total_results": total,
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "limit": limit,
        },
        "metadata": {"timestamp": utc_timestamp()},
    }


def get_material(engine: Engine, identifier: str) -> dict[str, Any]:
    with storage_errors("read material"), engine.connect() as conn:
        row = conn.execute(
            text("SELECT * FROM materials WHERE identifier = :identifier"),
            {"identifier": identifier},
        ).mappings().first()
    if row is None:
        raise NotFoundError(f"Material with ID {identifier} not found")
    return _material_from_row(row)


def list_categories(engine: Engine) -> list[str]:
    return _distinct(engine, "category")


def list_vendors(engine: Engine) -> list[str]:
    return _distinct(engine, "vendor_name")


def _distinct(engine: Engine, column: str) -> list[str]:
    with storage_errors(f"list {column} values"), engine.connect() as conn:
        result = conn.execute(
            text(f"SELECT DISTINCT {column} FROM materials WHERE {column} IS NOT NULL ORDER BY {column}")
        )
        return [value for value in result.scalars() if value]


def _validate_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")


def _where_clause(filters: MaterialFilters) -> tuple[str, dict[str, Any]]:
    clauses: list[str] = []
    params: dict[str, Any] = {}
    if filters.query and filters.query.strip():
        clauses.append(
            "(LOWER(name) LIKE :pattern ESCAPE '\\' OR LOWER(COALESCE(description, '')) LIKE :pattern ESCAPE '\\')"
        )
        params["pattern"] = _like_pattern(filters.query)
    if filters.category:
        clauses.append("LOWER(category) = :category")
        params["category"] = filters.category.strip().lower()
    if filters.vendor:
        clauses.append("vendor_name = :vendor")
        params["vendor"] = filters.vendor
    if filters.min_price is not None:
        clauses.append("price >= :min_price")
        params["min_price"] = filters.min_price
    if filters.max_price is not None:
        clauses.append("price <= :max_price")
        params["max_price"] = filters.max_price
    if filters.availability:
        if filters.availability not in AVAILABILITY_VALUES:
            raise ValidationError(f"availability must be one of {', '.join(AVAILABILITY_VALUES)}")
        clauses.append("availability = :availability")
        params["availability"] = filters.availability
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _like_pattern(query: str) -> str:
    escaped = query.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_params(material: Material) -> dict[str, Any]:
    row = material.as_row()
    row["specifications"] = dump_json(row["specifications"])
    return row


def _material_from_row(row: Mapping[str, Any]) -> dict[str, Any]:
    price = row["price"]
    if isinstance(price, Decimal):
        price = float(price)
    return {
        "identifier": row["identifier"],
        "name": row["name"],
        "description": row["description"] or "",
        "price": price,
        "category": row["category"],
        "url": row["url"],
        "image_url": row["image_url"],
        "vendor_name": row["vendor_name"],
        "quantity": row["quantity"],
        "unit": row["unit"],
        "specifications": load_json(row["specifications"]),
        "availability": row["availability"],
        "source": row["source"],
        "last_synced": parse_timestamp(row["last_synced"]),
    }
