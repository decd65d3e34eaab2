"""Normalization of extracted records into catalog materials."""

from __future__ import annotations

import hashlib
import math
import os
import re
from typing import Any, Mapping
from urllib.parse import urlparse, urlunparse

from supplystack.ingest import default_unit
from supplystack.ingest.models import Category, Material, RawRecord
from supplystack.utils.dates import utc_timestamp

DEFAULT_VENDOR = os.environ.get("SOURCE_VENDOR", "Home Depot")
DEFAULT_SOURCE = os.environ.get("SYNC_SOURCE", "home_depot")
DEFAULT_AVAILABILITY = "in_stock"

LEADING_INT_RE = re.compile(r"^\s*(\d[\d,]*)")
TRAILING_ID_RE = re.compile(r"/(\d{5,})/?$")
PRICE_RE = re.compile(r"-?\d+(?:\.\d+)?")

ID_KEYS = ("product_id", "sku", "id", "identifier")
NAME_KEYS = ("name", "material_name", "product_name", "title")
IMAGE_KEYS = ("image_url", "thumbnail_url", "thumbnail", "image")
QUANTITY_KEYS = ("quantity", "stock")
SPEC_KEYS = ("specifications", "specs")

AVAILABILITY_ALIASES = {
    "instock": "in_stock",
    "in_stock": "in_stock",
    "in stock": "in_stock",
    "limitedavailability": "in_stock",
    "available": "in_stock",
    "availablesoon": "available_soon",
    "available_soon": "available_soon",
    "available soon": "available_soon",
    "preorder": "available_soon",
    "backorder": "available_soon",
    "coming soon": "available_soon",
    "specialorder": "special_order",
    "special_order": "special_order",
    "special order": "special_order",
    "made to order": "special_order",
}


class InvalidRecordError(ValueError):
    """The record has neither an identifier nor a URL to derive one from."""


def normalize(
    raw: RawRecord,
    category: Category | str,
    *,
    vendor: str = DEFAULT_VENDOR,
    source: str = DEFAULT_SOURCE,
    synced_at: str | None = None,
) -> Material:
    if isinstance(category, Category):
        category_label, unit_key = category.label, category.slug
    else:
        category_label = unit_key = category
    url = _first_text(raw, ("url", "product_url")) or ""
    identifier = stable_identifier(raw, url)
    return Material(
        identifier=identifier,
        name=_first_text(raw, NAME_KEYS) or identifier,
        description=_first_text(raw, ("description",)) or "",
        price=parse_price(raw.get("price")),
        category=category_label,
        url=url,
        image_url=_first_text(raw, IMAGE_KEYS),
        vendor_name=_first_text(raw, ("vendor_name", "vendor")) or vendor,
        quantity=parse_quantity(_first_present(raw, QUANTITY_KEYS)),
        unit=_first_text(raw, ("unit",)) or default_unit(unit_key),
        specifications=_specifications(_first_present(raw, SPEC_KEYS)),
        availability=normalize_availability(raw.get("availability")),
        source=source,
        last_synced=synced_at or utc_timestamp(),
    )


def stable_identifier(raw: RawRecord, url: str) -> str:
    explicit = _first_text(raw, ID_KEYS)
    if explicit:
        return explicit
    if not url:
        raise InvalidRecordError("Record has no product id and no URL")
    canonical = canonical_url(url)
    match = TRAILING_ID_RE.search(urlparse(canonical).path)
    if match:
        return match.group(1)
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"url-{digest[:16]}"


def canonical_url(url: str) -> str:
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/") or "/"
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", "", ""))


def parse_quantity(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    match = LEADING_INT_RE.match(str(value))
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def parse_price(value: Any) -> float | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    match = PRICE_RE.search(str(value).replace(",", ""))
    if not match:
        return None
    return float(match.group(0))


def normalize_availability(value: Any) -> str:
    if not value:
        return DEFAULT_AVAILABILITY
    lowered = str(value).strip().lower()
    for prefix in ("http://schema.org/", "https://schema.org/"):
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix):]
    if lowered in AVAILABILITY_ALIASES:
        return AVAILABILITY_ALIASES[lowered]
    compact = lowered.replace("-", " ").replace("_", " ")
    return AVAILABILITY_ALIASES.get(compact, DEFAULT_AVAILABILITY)


def _specifications(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


def _first_present(raw: RawRecord, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return None


def _first_text(raw: RawRecord, keys: tuple[str, ...]) -> str | None:
    value = _first_present(raw, keys)
    if value is None:
        return None
    text = str(value).strip()
    return text or None
