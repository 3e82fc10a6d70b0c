"""Bearer-token acquisition and caching for the dispatch API.

One token is cached per ``(tenant, principal)`` pair with a *soft* TTL: a
refresh cadence we choose (default 20 minutes), not the token's real expiry,
which the upstream does not document.  Stale entries are never deleted; they
are simply replaced by the next successful refresh.

Concurrency
───────────
* Fast path: a live entry is returned without any await on I/O.
* Slow path: the key's ``asyncio.Lock`` is taken, the cache is checked again
  (another caller may have just refreshed it), and if still stale a single
  refresh task is started for the key.  Every caller that reaches the lock
  while that task runs awaits the *same* task, so N concurrent callers cost
  one authentication round-trip and all observe its outcome.
* The refresh task is awaited through ``asyncio.shield``: a caller whose own
  request is cancelled stops waiting immediately, but the refresh keeps going
  for everyone else and still lands in the cache.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from calltaker.config import DEFAULT_DISPATCH_API_BASE_URL
from calltaker.services.errors import (
    AuthError,
    ExtractionError,
    PreconditionError,
    TransportError,
    UpstreamStatusError,
)
from calltaker.services.metrics import metrics
from calltaker.services.parsing import extract_token
from calltaker.services.transport import HttpTransport

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 20 * 60
CACHE_NAME = "dispatch_token"

# Tenants the API expects in a specific casing; others pass through unchanged
TENANT_ALIASES = {"koach": "Koach"}

_MAX_ERROR_BODY_CHARS = 500


# ── URL / key normalisation ──────────────────────────────────────────


def normalize_base_url(base_url: str | None) -> str:
    """Configured base URL (or the default) without trailing slashes."""
    normalized = (base_url or "").strip() or DEFAULT_DISPATCH_API_BASE_URL
    return normalized.rstrip("/")


def normalize_tenant(tenant: str) -> str:
    """Case-fold known tenant aliases (``koach`` -> ``Koach``)."""
    tenant = (tenant or "").strip()
    return TENANT_ALIASES.get(tenant.lower(), tenant)


def token_cache_key(tenant: str, principal: str) -> str:
    """Case-insensitive ``tenant::principal`` key."""
    return f"{normalize_tenant(tenant)}::{(principal or '').strip()}".lower()


def build_auth_url(base_url: str | None) -> str:
    """``{base}/api/login/authenticate``, or ``{base}/login/authenticate``
    when the base already ends in ``/api``.
    """
    base = normalize_base_url(base_url)
    if base.lower().endswith("/api"):
        return f"{base}/login/authenticate"
    return f"{base}/api/login/authenticate"


@dataclass(frozen=True)
class TokenEntry:
    token: str
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class AuthTokenCache:
    """Acquire (and cache) a bearer token per tenant + principal."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        shared_secret: str = "",
        ttl_seconds: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._transport = transport
        self._shared_secret = shared_secret
        self._ttl = ttl_seconds if ttl_seconds > 0 else DEFAULT_TOKEN_TTL_SECONDS
        self._clock = clock
        self._entries: dict[str, TokenEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task[str]] = {}

    # ── Public API ───────────────────────────────────────────────────

    async def acquire(
        self,
        base_url: str | None,
        tenant: str,
        principal: str,
        shared_secret: str | None = None,
    ) -> str:
        """Return a bearer token, authenticating at most once per key.

        Raises:
            AuthError: missing tenant/principal/secret, unreachable endpoint,
                non-success status, or no token in the response body.
        """
        secret = self._shared_secret if shared_secret is None else shared_secret
        try:
            _check_preconditions(tenant, principal, secret)
        except PreconditionError as exc:
            raise AuthError(str(exc)) from exc

        api_tenant = normalize_tenant(tenant)
        key = token_cache_key(api_tenant, principal)

        entry = self._entries.get(key)
        if entry is not None and entry.is_live(self._clock()):
            metrics.record_cache(CACHE_NAME, "hit")
            return entry.token

        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is not None and entry.is_live(self._clock()):
                metrics.record_cache(CACHE_NAME, "hit")
                return entry.token

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(
                    self._refresh(key, base_url, api_tenant, principal.strip(), secret),
                )
                self._inflight[key] = task
                task.add_done_callback(functools.partial(self._refresh_done, key))

        return await asyncio.shield(task)

    def peek(self, tenant: str, principal: str) -> TokenEntry | None:
        """Current entry for the key, live or stale (read-only)."""
        return self._entries.get(token_cache_key(tenant, principal))

    # ── Internals ────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _refresh_done(self, key: str, task: asyncio.Task[str]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Token refresh for %s finished with %r", key, task.exception())

    async def _refresh(
        self,
        key: str,
        base_url: str | None,
        tenant: str,
        principal: str,
        secret: str,
    ) -> str:
        auth_url = build_auth_url(base_url)
        # Field names and casing are the upstream's contract
        payload = {"Username": principal, "Password": secret, "TenantId": tenant}

        try:
            response = await self._transport.send(
                "POST", auth_url, json_body=payload, operation="POST /login/authenticate",
            )
        except TransportError as exc:
            raise AuthError(
                f"Dispatch auth call failed to reach endpoint. auth_url='{auth_url}'. Error={exc}"
            ) from exc

        if not response.is_success:
            # Redact before truncating
            body = response.text.replace(secret, "***")[:_MAX_ERROR_BODY_CHARS]
            status_error = UpstreamStatusError(
                f"{response.status_code} {response.reason}",
                status_code=response.status_code,
                reason=response.reason,
                body=body,
            )
            raise AuthError(
                f"Dispatch auth failed: {response.status_code} {response.reason}. "
                f"tenant='{tenant}', username='{principal}', auth_url='{auth_url}'. Body={body}"
            ) from status_error

        try:
            token = extract_token(response.text)
        except ExtractionError as exc:
            raise AuthError(f"Dispatch auth: {exc}") from exc

        self._entries[key] = TokenEntry(token=token, expires_at=self._clock() + self._ttl)
        metrics.record_cache(CACHE_NAME, "refresh")
        logger.info("Dispatch token refreshed for tenant=%s username=%s", tenant, principal)
        return token


def _check_preconditions(tenant: str, principal: str, secret: str) -> None:
    if not tenant or not tenant.strip():
        raise PreconditionError("Dispatch auth: tenant is missing/empty.")
    if not principal or not principal.strip():
        raise PreconditionError("Dispatch auth: username is missing/empty.")
    if not secret or not secret.strip():
        raise PreconditionError(
            "Dispatch auth: DISPATCH_AGENT_SHARED_PASSWORD is missing/empty."
        )
