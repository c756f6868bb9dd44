# rentmap/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from ...config import settings

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class ProviderCooldown:
    """
    Minimum spacing between calls to one provider.

    Callers await the remaining interval and proceed; no lock is held across
    the sleep, so two concurrent callers may both proceed after one interval.
    """

    def __init__(self, min_interval_s: float):
        self.min_interval_s = float(min_interval_s)
        self._last_ts = 0.0

    def remaining(self, now: float | None = None) -> float:
        now = time.monotonic() if now is None else now
        return max(0.0, (self._last_ts + self.min_interval_s) - now)

    async def wait(self) -> None:
        if self.min_interval_s <= 0:
            return
        wait = self.remaining()
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_ts = time.monotonic()


async def resilient_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
    timeout_s: float = 30.0,
    max_retries: int | None = None,
    backoff_base_s: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> httpx.Response:
    """
    One HTTP call with retry on 429/5xx/timeouts/network errors (exponential backoff).

    Pass `client` to reuse a connection pool (or a MockTransport in tests).
    """
    retries = int(settings.HTTP_MAX_RETRIES if max_retries is None else max_retries)
    backoff = float(settings.HTTP_BACKOFF_BASE_S if backoff_base_s is None else backoff_base_s)

    last_exc: Exception | None = None
    for attempt in range(retries + 1):
        try:
            if client is not None:
                resp = await client.request(method, url, headers=headers, params=params, json=json, timeout=timeout_s)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s)) as c:
                    resp = await c.request(method, url, headers=headers, params=params, json=json)

            if resp.status_code in RETRYABLE_STATUS:
                raise httpx.HTTPStatusError("retryable_status", request=resp.request, response=resp)

            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            last_exc = e
            if e.response.status_code not in RETRYABLE_STATUS or attempt >= retries:
                break
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            last_exc = e
            if attempt >= retries:
                break
        await asyncio.sleep(min(5.0, backoff * (2**attempt)))

    assert last_exc is not None
    raise last_exc
