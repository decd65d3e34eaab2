"""Retry policy for calls to external services."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)
RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    return 2.0**attempt + random.random()


def no_backoff(attempt: int) -> float:
    return 0.0


class RetryableStatusError(Exception):
    """Raised for responses whose status code is worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code} from {response.request.url}")
        self.response = response


@dataclass(slots=True)
class RetryPolicy:
    """How many times to retry, how long to wait, and what to fall back to.

    ``fallback`` receives ``(category, limit)`` and returns placeholder
    records; ``None`` means persistent failures are raised to the caller.
    """

    max_retries: int = 2
    backoff: Callable[[int], float] = field(default=exponential_backoff)
    fallback: Callable[[Any, int], list[dict[str, Any]]] | None = None

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except (RetryableStatusError, *RETRY_EXCEPTIONS) as exc:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.backoff(attempt)
                logger.warning(
                    "Attempt %s/%s failed (%s); retrying in %.1fs",
                    attempt,
                    self.max_retries + 1,
                    exc,
                    delay,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
