"""Ingestion helpers."""

from __future__ import annotations

import functools
import pathlib

import yaml

from supplystack.ingest.models import Category

CATEGORIES_PATH = pathlib.Path(__file__).with_name("categories.yml")

DEFAULT_UNIT = "each"


def load_categories(limit: int | None = None) -> list[Category]:
    data = yaml.safe_load(CATEGORIES_PATH.read_text())
    categories = [Category(**item) for item in data]
    if limit:
        return categories[:limit]
    return categories


def find_category(slug: str, categories: list[Category] | None = None) -> Category | None:
    for category in categories or load_categories():
        if category.slug == slug.strip().lower():
            return category
    return None


@functools.lru_cache(maxsize=1)
def _unit_map() -> dict[str, str]:
    units: dict[str, str] = {}
    for category in load_categories():
        units[category.slug] = category.unit
        units[category.label.lower()] = category.unit
    return units


def default_unit(category: str) -> str:
    """Unit of sale used when a record does not state one."""
    return _unit_map().get(category.strip().lower(), DEFAULT_UNIT)
