# dealflow/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx

from ...config import settings

log = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class CircuitOpenError(httpx.HTTPError):
    pass


@dataclass
class _CircuitState:
    fails: int = 0
    opened_at: float | None = None


# one breaker per host so a Mapbox outage doesn't block GHL calls
_CIRCUITS: dict[str, _CircuitState] = {}
_RATE_LOCK = asyncio.Lock()
_LAST_TS = 0.0


def _circuit(url: str) -> _CircuitState:
    host = urlsplit(url).netloc or url
    st = _CIRCUITS.get(host)
    if st is None:
        st = _CIRCUITS[host] = _CircuitState()
    return st


def reset_circuits() -> None:
    global _LAST_TS
    _CIRCUITS.clear()
    _LAST_TS = 0.0


def _circuit_is_open(c: _CircuitState, now: float) -> bool:
    if c.opened_at is None:
        return False
    if (now - c.opened_at) < float(settings.HTTP_CIRCUIT_RESET_S):
        return True
    # half-open: let one call through, a failure re-opens immediately
    c.opened_at = None
    c.fails = max(0, int(settings.HTTP_CIRCUIT_FAIL_THRESHOLD) - 1)
    return False


def _circuit_on_success(c: _CircuitState) -> None:
    c.fails = 0
    c.opened_at = None


def _circuit_on_failure(c: _CircuitState) -> None:
    c.fails += 1
    if c.fails >= int(settings.HTTP_CIRCUIT_FAIL_THRESHOLD):
        c.opened_at = time.time()


async def _rate_limit() -> None:
    """Very simple per-process limiter."""
    global _LAST_TS
    rps = float(settings.HTTP_RATE_LIMIT_RPS)
    if rps <= 0:
        return
    min_gap = 1.0 / rps
    async with _RATE_LOCK:
        now = time.time()
        wait = (_LAST_TS + min_gap) - now
        if wait > 0:
            await asyncio.sleep(wait)
        _LAST_TS = time.time()


async def resilient_request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
    data: Any | None = None,
    client: httpx.AsyncClient | None = None,
    retry: bool = True,
) -> httpx.Response:
    """
    Rate-limited request with a per-host circuit breaker.

    429/5xx, timeouts and network errors are retried with exponential backoff
    (unless retry=False). Other 4xx responses raise HTTPStatusError at once
    and do not count against the breaker.
    """
    circuit = _circuit(url)
    if _circuit_is_open(circuit, time.time()):
        raise CircuitOpenError(f"circuit_open: refusing external call to {url}")

    await _rate_limit()

    timeout = httpx.Timeout(float(settings.HTTP_TIMEOUT_S))
    max_retries = int(settings.HTTP_MAX_RETRIES) if retry else 0
    backoff = float(settings.HTTP_BACKOFF_BASE_S)

    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            if client is not None:
                resp = await client.request(method, url, headers=headers, params=params, json=json, data=data)
            else:
                async with httpx.AsyncClient(timeout=timeout) as c:
                    resp = await c.request(method, url, headers=headers, params=params, json=json, data=data)

            if resp.status_code in RETRYABLE_STATUS:
                raise httpx.HTTPStatusError(
                    f"retryable_status {resp.status_code}", request=resp.request, response=resp
                )
        except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as e:
            last_exc = e
            _circuit_on_failure(circuit)
            if attempt >= max_retries:
                break
            delay = min(5.0, backoff * (2**attempt))
            log.debug("retrying %s %s in %.2fs after %s", method, url, delay, e)
            await asyncio.sleep(delay)
            continue

        # non-retryable client errors surface to the caller as-is
        resp.raise_for_status()
        _circuit_on_success(circuit)
        return resp

    assert last_exc is not None
    raise last_exc
