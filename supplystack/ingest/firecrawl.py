"""Firecrawl extraction client used to populate the materials catalog."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import httpx

from supplystack.ingest.models import Category
from supplystack.ingest.synthetic import synthetic_records
from supplystack.logic.errors import ExtractionError
from supplystack.utils.retry import RETRY_EXCEPTIONS, RETRY_STATUS_CODES, RetryableStatusError, RetryPolicy

logger = logging.getLogger(__name__)

FIRECRAWL_BASE_URL = os.environ.get("FIRECRAWL_API_BASE_URL", "https://api.firecrawl.dev")
EXTRACT_TIMEOUT = float(os.environ.get("EXTRACT_TIMEOUT", 60))
EXTRACT_MAX_RETRIES = int(os.environ.get("EXTRACT_MAX_RETRIES", 2))
EXTRACT_POLL_INTERVAL = float(os.environ.get("EXTRACT_POLL_INTERVAL", 2))
EXTRACT_MAX_POLLS = int(os.environ.get("EXTRACT_MAX_POLLS", 60))

PRODUCT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "product_id": {"type": "string"},
        "name": {"type": "string"},
        "description": {"type": ["string", "null"]},
        "price": {"type": ["number", "null"]},
        "category": {"type": ["string", "null"]},
        "url": {"type": "string"},
        "image_url": {"type": ["string", "null"]},
        "vendor_name": {"type": ["string", "null"]},
        "stock": {"type": ["string", "null"]},
        "unit": {"type": ["string", "null"]},
        "specifications": {"type": ["object", "null"], "additionalProperties": {"type": "string"}},
        "availability": {"type": ["string", "null"], "enum": ["in_stock", "available_soon", "special_order", None]},
    },
    "required": ["url"],
}
EXTRACT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"products": {"type": "array", "items": PRODUCT_SCHEMA}},
    "required": ["products"],
}

FAILED_JOB_STATES = frozenset({"failed", "cancelled"})


def synthetic_fallback_enabled() -> bool:
    flag = os.environ.get("SYNTHETIC_FALLBACK")
    if flag is None:
        return os.environ.get("APP_ENV", "development") != "production"
    return flag.strip().lower() in {"1", "true", "yes", "on"}


def default_policy() -> RetryPolicy:
    fallback = synthetic_records if synthetic_fallback_enabled() else None
    return RetryPolicy(max_retries=EXTRACT_MAX_RETRIES, fallback=fallback)


def build_prompt(category: Category, limit: int) -> str:
    return (
        f"Extract up to {limit} products for {category.query} listed on this Home Depot page. "
        "For each product return the product name, a short description, the price as a number, "
        "the category, the product URL, the thumbnail image URL, the vendor, the stock text "
        "(for example '12 in stock'), the unit of sale, a map of specifications, the availability "
        "(one of in_stock, available_soon, special_order) and the product ID. The product ID is "
        "the number at the end of the product URL, for example 206019465 in "
        "https://www.homedepot.com/p/2-in-x-6-in-x-12-ft-2-Premium-Grade-Fir-Dimensional-Lumber-2023-12/206019465."
    )


class ExtractionClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        session: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        poll_interval: float = EXTRACT_POLL_INTERVAL,
        max_polls: int = EXTRACT_MAX_POLLS,
    ) -> None:
        self.api_key = api_key or os.environ.get("FIRECRAWL_API_KEY", "")
        self.base_url = (base_url or FIRECRAWL_BASE_URL).rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=EXTRACT_TIMEOUT)
        self.policy = policy or default_policy()
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch_category_materials(self, category: Category, limit: int = 10) -> list[dict[str, Any]]:
        """Raw product records for ``category``; an empty list is a valid result."""
        logger.info("Extracting up to %s %s materials", limit, category.slug)
        payload = {
            "urls": [category.url],
            "prompt": build_prompt(category, limit),
            "schema": EXTRACT_SCHEMA,
        }
        try:
            data = await self._extract(payload)
        except (RetryableStatusError, *RETRY_EXCEPTIONS) as exc:
            return self._fallback_or_raise(category, limit, exc)
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Extraction request failed: {exc}", category=category.slug) from exc
        products = _products(data, category)
        logger.info("Extraction returned %s %s products", len(products), category.slug)
        return products[:limit]

    async def _extract(self, payload: dict[str, Any]) -> Any:
        body = await self.policy.run(self._request, "POST", f"{self.base_url}/v1/extract", payload)
        if body.get("data") is not None or not body.get("id"):
            return body.get("data")
        job_id = body["id"]
        for _ in range(self.max_polls):
            if self.poll_interval > 0:
                await asyncio.sleep(self.poll_interval)
            body = await self.policy.run(self._request, "GET", f"{self.base_url}/v1/extract/{job_id}")
            status = body.get("status")
            if status == "completed":
                return body.get("data")
            if status in FAILED_JOB_STATES:
                raise ExtractionError(f"Extraction job {job_id} {status}")
        raise ExtractionError(f"Extraction job {job_id} did not finish after {self.max_polls} polls")

    async def _request(self, method: str, url: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        response = await self.session.request(method, url, json=payload, headers=headers)
        if response.status_code in RETRY_STATUS_CODES:
            raise RetryableStatusError(response)
        if response.status_code >= 400:
            raise ExtractionError(
                f"Extraction service returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ExtractionError("Extraction service returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ExtractionError("Extraction service returned a malformed payload")
        if body.get("success") is False or body.get("error"):
            raise ExtractionError(f"Extraction failed: {body.get('error') or 'unknown error'}")
        return body

    def _fallback_or_raise(self, category: Category, limit: int, exc: Exception) -> list[dict[str, Any]]:
        attempts = self.policy.max_retries + 1
        if self.policy.fallback is None:
            raise ExtractionError(
                f"Extraction for {category.slug} failed after {attempts} attempts: {exc}",
                category=category.slug,
            ) from exc
        logger.warning(
            "Extraction for %s failed after %s attempts (%s); using synthetic fallback data",
            category.slug,
            attempts,
            exc,
        )
        return self.policy.fallback(category, limit)


def _products(data: Any, category: Category) -> list[dict[str, Any]]:
    if isinstance(data, list):
        data = {"products": data}
    if not isinstance(data, dict) or not isinstance(data.get("products"), list):
        raise ExtractionError("Extraction payload has no products list", category=category.slug)
    return [item for item in data["products"] if isinstance(item, dict)]
