"""Per-tenant TTL cache for expensive, authenticated list fetches.

Design decisions
────────────────
• **Cache-aside with single-flight**: a live entry is served without I/O;
  otherwise the tenant's ``asyncio.Lock`` is taken, the cache re-checked, and
  one shared refresh task runs for the tenant.  Concurrent callers await that
  task (through ``asyncio.shield``) instead of issuing their own fetch.
• **Serve stale on failure**: a failed refresh never overwrites or clears an
  entry.  If the previous entry had at least one item it is returned as-is,
  otherwise the result is empty.  ``get`` never raises an upstream error.
• **Empty is fresh**: a *successful* fetch replaces the entry even when it
  returns no items, and resets the TTL.
• Purely ephemeral: data is lost on process restart.

Usage
─────
>>> cache = VoucherAccountsCache(dispatch_client)
>>> await cache.get("https://apicall.koachapp.com", "koach", "agent@example.com")
(VoucherAccount(id='12', company='Acme Corp', abbreviation='ACME'), ...)
>>> cache.invalidate("koach")
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from calltaker.services.dispatch_client import DispatchClient
from calltaker.services.metrics import metrics
from calltaker.services.models import VoucherAccount

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ACCOUNTS_TTL_SECONDS = 30 * 60


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """What a fetcher reports back: success flag, items, safe error text."""

    success: bool
    items: Sequence[T] = field(default_factory=tuple)
    error: str | None = None


@dataclass(frozen=True)
class ResourceEntry(Generic[T]):
    items: tuple[T, ...]
    fetched_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


Fetcher = Callable[[str | None, str, str], Awaitable[FetchResult[T]]]


def tenant_cache_key(tenant: str) -> str:
    """``"koach"``, ``" Koach "`` and ``"KOACH"`` share one bucket."""
    return (tenant or "").strip().lower()


class ResourceCache(Generic[T]):
    """Best-effort TTL cache keyed by tenant."""

    def __init__(
        self,
        fetch: Fetcher[T],
        *,
        ttl_seconds: float = DEFAULT_ACCOUNTS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        name: str = "resource",
    ):
        self._fetch = fetch
        self._ttl = ttl_seconds if ttl_seconds > 0 else DEFAULT_ACCOUNTS_TTL_SECONDS
        self._clock = clock
        self._name = name
        self._entries: dict[str, ResourceEntry[T]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task[tuple[T, ...]]] = {}

    # ── Core operations ──────────────────────────────────────────────

    async def get(self, base_url: str | None, tenant: str, principal: str) -> tuple[T, ...]:
        """Fresh, stale or empty items for *tenant*; never raises for upstream errors."""
        key = tenant_cache_key(tenant)

        entry = self._entries.get(key)
        if entry is not None and entry.is_live(self._clock()):
            metrics.record_cache(self._name, "hit")
            return entry.items

        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is not None and entry.is_live(self._clock()):
                metrics.record_cache(self._name, "hit")
                return entry.items

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._refresh(key, base_url, tenant, principal))
                self._inflight[key] = task
                task.add_done_callback(functools.partial(self._refresh_done, key))

        return await asyncio.shield(task)

    def invalidate(self, tenant: str) -> bool:
        """Drop one tenant's entry (its lock is kept and reused)."""
        removed = self._entries.pop(tenant_cache_key(tenant), None) is not None
        if removed:
            logger.info("%s cache: invalidated tenant %s", self._name, tenant_cache_key(tenant))
        return removed

    def invalidate_all(self) -> int:
        """Drop every entry.  Returns the number removed."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("%s cache: invalidated all (%d entries)", self._name, count)
        return count

    # ── Introspection ────────────────────────────────────────────────

    def peek(self, tenant: str) -> ResourceEntry[T] | None:
        """Current entry for *tenant*, live or stale, without fetching."""
        return self._entries.get(tenant_cache_key(tenant))

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    # ── Internals ────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _refresh_done(self, key: str, task: asyncio.Task[tuple[T, ...]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _refresh(
        self, key: str, base_url: str | None, tenant: str, principal: str,
    ) -> tuple[T, ...]:
        try:
            outcome = await self._fetch(base_url, tenant, principal)
        except Exception as exc:
            logger.exception("%s cache: fetch for %s raised", self._name, key)
            outcome = FetchResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if not outcome.success:
            previous = self._entries.get(key)
            if previous is not None and previous.items:
                metrics.record_cache(self._name, "stale")
                logger.warning(
                    "%s cache: refresh for %s failed (%s); serving %d stale items",
                    self._name, key, outcome.error, len(previous.items),
                )
                return previous.items
            metrics.record_cache(self._name, "empty")
            logger.warning(
                "%s cache: refresh for %s failed (%s); nothing cached",
                self._name, key, outcome.error,
            )
            return ()

        now = self._clock()
        entry = ResourceEntry(
            items=tuple(outcome.items), fetched_at=now, expires_at=now + self._ttl,
        )
        self._entries[key] = entry
        metrics.record_cache(self._name, "refresh")
        logger.info("%s cache: refreshed %s (%d items)", self._name, key, len(entry.items))
        return entry.items


class VoucherAccountsCache(ResourceCache[VoucherAccount]):
    """Voucher accounts per tenant, refreshed at most every 30 minutes."""

    def __init__(
        self,
        client: DispatchClient,
        *,
        ttl_seconds: float = DEFAULT_ACCOUNTS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        super().__init__(
            self._fetch_accounts, ttl_seconds=ttl_seconds, clock=clock, name="voucher_accounts",
        )

    async def _fetch_accounts(
        self, base_url: str | None, tenant: str, principal: str,
    ) -> FetchResult[VoucherAccount]:
        result = await self._client.get_voucher_accounts(base_url, tenant, principal)
        return FetchResult(success=result.success, items=result.accounts, error=result.error)
