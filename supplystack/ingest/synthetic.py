"""Placeholder records used when the extraction service stays unreachable."""

from __future__ import annotations

import random
from typing import Any

from supplystack.ingest.models import Category

NAME_PARTS = {
    "lumber": (("Pine", "Oak", "Cedar", "Maple"), ("2x4", "2x6", "4x4", "1x8"), ("Board", "Stud", "Plank", "Beam")),
    "drywall": (("Regular", "Moisture-Resistant", "Fire-Resistant", "Soundproof"), ('1/2"', '5/8"', '3/8"', '1/4"'), ("Drywall Panel",)),
    "roofing": (("Asphalt", "Metal", "Slate", "Tile"), ("Shingle", "Panel", "Sheet", "Underlayment"), ("Bundle",)),
}
AVAILABILITY_CYCLE = ("in_stock", "in_stock", "available_soon", "special_order")
SPEC_BRANDS = ("HDX", "Husky", "Milwaukee", "DeWalt", "Ryobi")


def synthetic_records(category: Category, limit: int) -> list[dict[str, Any]]:
    """Deterministic records for ``category``; same inputs give the same ids and prices."""
    rng = random.Random(f"{category.slug}:{limit}")
    return [_record(category, index, rng) for index in range(limit)]


def _record(category: Category, index: int, rng: random.Random) -> dict[str, Any]:
    product_id = f"synthetic-{category.slug}-{index + 1}"
    return {
        "product_id": product_id,
        "name": _name(category, index),
        "description": f"Quality {category.label.lower()} material for construction and home improvement projects.",
        "price": round(rng.uniform(5, 105), 2),
        "url": f"https://www.homedepot.com/p/{category.slug}/{product_id}",
        "image_url": f"https://images.homedepot.com/materials/{category.slug}/{product_id}.jpg",
        "stock": f"{rng.randint(1, 100)} in stock",
        "unit": category.unit,
        "specifications": {
            "brand": SPEC_BRANDS[index % len(SPEC_BRANDS)],
            "warranty": f"{rng.randint(1, 10)} years",
            "weight": f"{rng.randint(1, 50)} lbs",
        },
        "availability": AVAILABILITY_CYCLE[index % len(AVAILABILITY_CYCLE)],
        "synthetic": True,
    }


def _name(category: Category, index: int) -> str:
    parts = NAME_PARTS.get(category.slug)
    if not parts:
        return f"{category.label} Item #{index + 1}"
    return " ".join(group[index % len(group)] for group in parts)
