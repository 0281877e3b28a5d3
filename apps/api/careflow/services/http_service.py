"""HTTP helpers with retry/backoff for outbound integrations."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


def _retry_after(response: httpx.Response, max_delay: float) -> float | None:
    """Seconds from a Retry-After header, capped at max_delay.

    Only the delta-seconds form is honoured; an HTTP-date falls back to backoff.
    """
    value = response.headers.get("retry-after", "").strip()
    if not value.isdigit():
        return None
    return min(float(value), max_delay)


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries.

    A throttled provider (429/503 with Retry-After) is waited on for the time
    it asks for. Transport errors on the last attempt propagate; a retryable
    status on the last attempt is returned to the caller as-is.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            await asyncio.sleep(_backoff(attempt, base_delay, max_delay))
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = _retry_after(response, max_delay)
            if delay is None:
                delay = _backoff(attempt, base_delay, max_delay)
            logger.warning("HTTP request returned %s, retrying in %.1fs", response.status_code, delay)
            await asyncio.sleep(delay)
            continue

        return response

    return response
