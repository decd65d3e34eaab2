"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

RawRecord = Mapping[str, Any]

AVAILABILITY_VALUES = ("in_stock", "available_soon", "special_order")


@dataclass(slots=True)
class Category:
    slug: str
    label: str
    query: str
    url: str
    unit: str = "each"


@dataclass(slots=True)
class Material:
    identifier: str
    name: str
    category: str
    url: str
    vendor_name: str
    unit: str
    availability: str
    last_synced: str
    source: str
    description: str = ""
    price: float | None = None
    image_url: str | None = None
    quantity: int | None = None
    specifications: dict[str, str] = field(default_factory=dict)

    def as_row(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "url": self.url,
            "image_url": self.image_url,
            "vendor_name": self.vendor_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "specifications": dict(self.specifications),
            "availability": self.availability,
            "source": self.source,
            "last_synced": self.last_synced,
        }
