"""
Fetch-with-retry for upstream JSON endpoints.

Bounded attempts with exponential backoff plus random jitter. Transport errors
and 429/5xx responses are retried; other 4xx responses fail immediately.
Everything that escapes is an UpstreamFetchError.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Optional

import httpx

from config import (
    FETCH_BACKOFF_CAP_SECONDS,
    FETCH_BACKOFF_JITTER_SECONDS,
    FETCH_BACKOFF_SECONDS,
    FETCH_MAX_ATTEMPTS,
    RETRY_STATUS_CODES,
)
from core.errors import UpstreamFetchError

logger = logging.getLogger("collector.http")


def backoff_delay(
    attempt: int,
    base: float = FETCH_BACKOFF_SECONDS,
    cap: float = FETCH_BACKOFF_CAP_SECONDS,
    jitter: float = FETCH_BACKOFF_JITTER_SECONDS,
    retry_after: Optional[str] = None,
) -> float:
    """Seconds to wait before retry number `attempt` (0-based)."""
    delay = min(cap, base * (2 ** attempt))
    if retry_after:
        try:
            delay = min(cap, float(str(retry_after).strip()))
        except ValueError:
            pass
    return delay + random.uniform(0.0, jitter)


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    max_attempts: int = FETCH_MAX_ATTEMPTS,
    backoff_base: float = FETCH_BACKOFF_SECONDS,
    jitter: float = FETCH_BACKOFF_JITTER_SECONDS,
) -> Any:
    """
    GET `url` and decode its JSON body, retrying transient failures.

    Raises:
        UpstreamFetchError: after `max_attempts` failures, on a non-retryable
            status, or when the body is not JSON.
    """
    attempts = max(1, int(max_attempts))
    last_error = "unknown error"
    last_status: Optional[int] = None

    for attempt in range(attempts):
        retry_after = None
        try:
            resp = await client.get(url, params=params)
        except httpx.TransportError as e:
            last_error = f"{type(e).__name__}: {e}"
            last_status = None
        else:
            last_status = resp.status_code
            if resp.status_code == 200:
                try:
                    return resp.json()
                except ValueError as e:
                    raise UpstreamFetchError(
                        f"Invalid JSON from {url}: {e}",
                        url=url, status_code=resp.status_code, attempts=attempt + 1,
                    ) from e

            if resp.status_code not in RETRY_STATUS_CODES:
                raise UpstreamFetchError(
                    f"HTTP {resp.status_code} from {url}",
                    url=url, status_code=resp.status_code, attempts=attempt + 1,
                )
            last_error = f"HTTP {resp.status_code}"
            retry_after = resp.headers.get("Retry-After")

        if attempt < attempts - 1:
            delay = backoff_delay(attempt, base=backoff_base, jitter=jitter, retry_after=retry_after)
            logger.debug(f"{url}: {last_error}, retry {attempt + 1}/{attempts - 1} in {delay:.2f}s")
            await asyncio.sleep(delay)

    logger.warning(f"{url}: giving up after {attempts} attempt(s) ({last_error})")
    raise UpstreamFetchError(
        f"Fetch failed after {attempts} attempt(s): {last_error}",
        url=url, status_code=last_status, attempts=attempts,
    )
