"""Authenticated read calls against the dispatch (trip) API.

Every method obtains its bearer token from the shared :class:`AuthTokenCache`
and returns a result record instead of raising: ``success`` is ``False`` and
``error`` carries a safe message (never the password or the token) when the
token cannot be acquired, the request never completes, or the status is not
2xx.  ``raw_json`` keeps the upstream body while the schema is unsettled.

Endpoints:
  GET {base}/Api/Trip/GetLastReservationStatusByPhone?phone=...
  GET {base}/Trip/GetReservationByRid/{rid}   (then /Api/Trip/... variant)
  GET {base}/Api/Voucher/GetAccounts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

from calltaker.services.auth import AuthTokenCache, normalize_base_url
from calltaker.services.errors import AuthError, TransportError
from calltaker.services.models import (
    AccountsResult,
    ReservationDetailResult,
    StatusLookupResult,
)
from calltaker.services.parsing import (
    parse_accounts,
    parse_reservation_detail,
    parse_status_record,
)
from calltaker.services.transport import HttpTransport, UpstreamResponse

logger = logging.getLogger(__name__)

STATUS_BY_PHONE_PATH = "Api/Trip/GetLastReservationStatusByPhone"
VOUCHER_ACCOUNTS_PATH = "Api/Voucher/GetAccounts"


@dataclass(frozen=True)
class PathCandidate:
    """One way of addressing an endpoint; tried in order until one answers 2xx."""

    template: str
    operation: str

    def render(self, **values: str) -> str:
        return self.template.format(**{k: quote(v, safe="") for k, v in values.items()})


# Some deployments only serve the detail endpoint under an ``Api/`` prefix
RESERVATION_BY_RID_CANDIDATES = (
    PathCandidate("Trip/GetReservationByRid/{rid}", "GET /Trip/GetReservationByRid"),
    PathCandidate("Api/Trip/GetReservationByRid/{rid}", "GET /Api/Trip/GetReservationByRid"),
)


class DispatchClient:
    """Read-only dispatch API calls on behalf of a tenant + principal."""

    def __init__(self, transport: HttpTransport, tokens: AuthTokenCache):
        self._transport = transport
        self._tokens = tokens

    # ── Internal helpers ─────────────────────────────────────────────

    async def _auth_headers(self, base_url: str | None, tenant: str, principal: str) -> dict[str, str]:
        token = await self._tokens.acquire(base_url, tenant, principal)
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _get(
        self,
        base_url: str | None,
        path: str,
        headers: dict[str, str],
        *,
        params: dict[str, str] | None = None,
        operation: str | None = None,
    ) -> UpstreamResponse:
        url = f"{normalize_base_url(base_url)}/{path}"
        return await self._transport.send(
            "GET", url, headers=headers, params=params, operation=operation or f"GET /{path}",
        )

    # ── Public API methods ───────────────────────────────────────────

    async def get_last_reservation_status_by_phone(
        self,
        base_url: str | None,
        tenant: str,
        principal: str,
        phone: str,
    ) -> StatusLookupResult:
        """Thin status record of the caller's most recent reservation."""
        tenant = tenant or ""
        phone = (phone or "").strip()
        result = StatusLookupResult(tenant=tenant, phone=phone)

        if not phone:
            result.error = "Phone is missing/empty; lookup skipped."
            return result

        try:
            headers = await self._auth_headers(base_url, tenant, principal)
        except AuthError as exc:
            result.error = f"Token acquisition failed: {exc.reason}"
            return result

        try:
            response = await self._get(
                base_url, STATUS_BY_PHONE_PATH, headers, params={"phone": phone},
            )
        except TransportError as exc:
            result.error = f"Dispatch API call failed (network/TLS/etc): {exc}"
            return result

        if not response.is_success:
            result.error = f"Dispatch status lookup failed: {response.describe()}"
            return result

        result.success = True
        result.raw_json = response.text
        for name, value in parse_status_record(response.text).items():
            setattr(result, name, value)
        return result

    async def get_reservation_by_rid(
        self,
        base_url: str | None,
        tenant: str,
        principal: str,
        rid: str,
    ) -> ReservationDetailResult:
        """Full reservation record, trying each path variant in order.

        A non-2xx answer moves on to the next variant; a transport failure
        stops immediately since another path will not fix the network.
        """
        tenant = tenant or ""
        rid = (rid or "").strip()
        result = ReservationDetailResult(tenant=tenant, rid=rid)

        if not rid:
            result.error = "RID is missing/empty; lookup skipped."
            return result

        try:
            headers = await self._auth_headers(base_url, tenant, principal)
        except AuthError as exc:
            result.error = f"Token acquisition failed: {exc.reason}"
            return result

        last_response: UpstreamResponse | None = None
        for candidate in RESERVATION_BY_RID_CANDIDATES:
            try:
                response = await self._get(
                    base_url, candidate.render(rid=rid), headers, operation=candidate.operation,
                )
            except TransportError as exc:
                result.error = f"Dispatch API call failed (network/TLS/etc): {exc}"
                return result

            if response.is_success:
                result.success = True
                result.raw_json = response.text
                for name, value in parse_reservation_detail(response.text).items():
                    setattr(result, name, value)
                if not result.reservation_id:
                    result.reservation_id = rid
                return result

            logger.debug(
                "RID lookup via %s returned %d; trying next path",
                candidate.template, response.status_code,
            )
            last_response = response

        if last_response is not None:
            result.error = f"Dispatch RID lookup failed: {last_response.describe()}"
        else:
            result.error = "Dispatch RID lookup failed: no response."
        return result

    async def get_voucher_accounts(
        self,
        base_url: str | None,
        tenant: str,
        principal: str,
    ) -> AccountsResult:
        """Voucher accounts for the tenant.  Success may carry an empty list."""
        tenant = tenant or ""
        result = AccountsResult(tenant=tenant)

        if not tenant.strip():
            result.error = "Tenant is missing/empty; voucher accounts lookup skipped."
            return result

        try:
            headers = await self._auth_headers(base_url, tenant, principal)
        except AuthError as exc:
            result.error = f"Token acquisition failed: {exc.reason}"
            return result

        try:
            response = await self._get(base_url, VOUCHER_ACCOUNTS_PATH, headers)
        except TransportError as exc:
            result.error = f"Dispatch API call failed (network/TLS/etc): {exc}"
            return result

        if not response.is_success:
            result.error = f"Dispatch voucher accounts lookup failed: {response.describe()}"
            return result

        result.success = True
        result.raw_json = response.text
        result.accounts = parse_accounts(response.text)
        return result
