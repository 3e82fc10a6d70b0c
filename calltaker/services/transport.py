"""Async HTTP transport shared by every upstream call.

A thin wrapper around ``httpx.AsyncClient`` that turns the outcome of one
request into either an :class:`UpstreamResponse` (any HTTP status) or a
:class:`TransportError` (the request never completed).  Calls are **not**
retried: the dispatch lookups are best-effort and the caller on the phone is
waiting, so a transport failure is surfaced immediately.

Cancellation is asyncio's: if the awaiting task is cancelled, the in-flight
request is abandoned and ``asyncio.CancelledError`` propagates untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from calltaker.services.errors import TransportError
from calltaker.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class UpstreamResponse:
    """Status line and body of a completed upstream call."""

    status_code: int
    reason: str
    text: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def describe(self) -> str:
        """``"404 Not Found. Body=..."``, as used in error notes."""
        return f"{self.status_code} {self.reason}. Body={self.text}"


class HttpTransport:
    """``send(method, url, ...) -> UpstreamResponse | TransportError``."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        service: str = "dispatch",
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._service = service

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        params: dict[str, str] | None = None,
        operation: str | None = None,
    ) -> UpstreamResponse:
        """Execute one request.  Non-2xx statuses are returned, not raised."""
        operation = operation or f"{method} {httpx.URL(url).path}"
        t0 = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                json=json_body,
                params=params,
            )
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                self._service, operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.warning(
                "%s %s failed after %.0fms (%s)",
                self._service, operation, elapsed, type(exc).__name__,
            )
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        result = UpstreamResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            text=response.text,
        )
        if result.is_success:
            metrics.record_success(self._service, operation, latency_ms=elapsed)
        else:
            metrics.record_failure(
                self._service, operation,
                error_type=str(result.status_code), latency_ms=elapsed,
            )
        logger.debug(
            "%s %s -> %d (%.0fms)", self._service, operation, result.status_code, elapsed,
        )
        return result

    async def aclose(self) -> None:
        await self._client.aclose()
