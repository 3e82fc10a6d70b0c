"""Two-stage reservation lookup for an incoming caller.

Stage 1 asks the dispatch API for the caller's last reservation *status* by
phone number (a thin record, but it carries the RID).  Stage 2 fetches the
authoritative reservation *detail* by RID and merges it over stage 1.

Each stage degrades instead of failing:

* precondition missing        -> not found, note names what is missing
* stage 1 fails               -> not found, note carries the upstream error
* stage 1 has no RID          -> found with stage-1 fields only
* stage 2 fails on every path -> found with stage-1 fields, note carries error
* stage 2 succeeds            -> found with merged fields + truncated payload

Nothing escapes :meth:`ReservationLookup.lookup` except task cancellation.
"""

from __future__ import annotations

import logging

from calltaker.services.dispatch_client import DispatchClient
from calltaker.services.models import (
    ReservationDetailResult,
    ReservationLookupResult,
    ReservationSnapshot,
    StatusLookupResult,
)
from calltaker.services.parsing import truncate_for_prompt

logger = logging.getLogger(__name__)

DEFAULT_PAYLOAD_MAX_CHARS = 2500

_MERGED_FIELDS = ("status", "pickup", "dropoff", "scheduled_time")
_ENRICHMENT_FIELDS = ("passenger_name", "vehicle_number", "driver_name", "payment_type")


def snapshot_from_status(status: StatusLookupResult) -> ReservationSnapshot:
    return ReservationSnapshot(
        reservation_id=(status.reservation_id or "").strip(),
        status=status.status or "",
        pickup=status.pickup or "",
        dropoff=status.dropoff or "",
        scheduled_time=status.scheduled_time or "",
    )


def merge_detail(
    snapshot: ReservationSnapshot,
    detail: ReservationDetailResult,
    payload_max_chars: int = DEFAULT_PAYLOAD_MAX_CHARS,
) -> ReservationSnapshot:
    """Overlay non-empty detail fields on *snapshot* (stage-1 values are the fallback)."""
    for name in _MERGED_FIELDS + _ENRICHMENT_FIELDS:
        value = getattr(detail, name)
        if value and value.strip():
            setattr(snapshot, name, value)
    snapshot.full_reservation_raw_json = truncate_for_prompt(detail.raw_json, payload_max_chars)
    return snapshot


class ReservationLookup:
    """Produce a found/not-found reservation result for a caller."""

    def __init__(self, client: DispatchClient, *, payload_max_chars: int = DEFAULT_PAYLOAD_MAX_CHARS):
        self._client = client
        self._payload_max_chars = payload_max_chars

    async def lookup(
        self,
        *,
        base_url: str | None,
        tenant: str,
        principal: str,
        caller_phone: str | None,
        credential_available: bool,
        auth_error: str | None = None,
    ) -> ReservationLookupResult:
        """Run the lookup; always returns a well-formed result."""
        if not credential_available:
            return ReservationLookupResult.not_found(
                f"Dispatch auth not available; reservation lookup skipped. AuthError={auth_error}"
            )
        if not caller_phone or not caller_phone.strip():
            return ReservationLookupResult.not_found(
                "CallerPhone missing; reservation lookup skipped."
            )
        if not principal or not principal.strip():
            return ReservationLookupResult.not_found(
                "AgentEmail missing; reservation lookup skipped."
            )

        try:
            return await self._lookup(base_url, tenant, principal, caller_phone)
        except Exception as exc:
            logger.exception("Reservation lookup for tenant=%s raised", tenant)
            return ReservationLookupResult.not_found(f"Reservation lookup exception: {exc}")

    async def _lookup(
        self, base_url: str | None, tenant: str, principal: str, caller_phone: str,
    ) -> ReservationLookupResult:
        status = await self._client.get_last_reservation_status_by_phone(
            base_url, tenant, principal, caller_phone,
        )
        if not status.success:
            logger.info("Status lookup failed for tenant=%s: %s", tenant, status.error)
            return ReservationLookupResult.not_found(
                f"Dispatch API phone lookup failed: {status.error}", status_lookup=status,
            )

        snapshot = snapshot_from_status(status)
        if not snapshot.reservation_id:
            return ReservationLookupResult(
                found=True,
                snapshot=snapshot,
                note=(
                    "Phone lookup succeeded but did not return a RID; "
                    "full reservation lookup skipped."
                ),
                status_lookup=status,
            )

        detail = await self._client.get_reservation_by_rid(
            base_url, tenant, principal, snapshot.reservation_id,
        )
        if not detail.success:
            logger.info(
                "RID lookup failed for %s (tenant=%s): %s",
                snapshot.reservation_id, tenant, detail.error,
            )
            return ReservationLookupResult(
                found=True,
                snapshot=snapshot,
                note=f"Phone lookup succeeded; RID lookup failed: {detail.error}",
                status_lookup=status,
                detail_lookup=detail,
            )

        return ReservationLookupResult(
            found=True,
            snapshot=merge_detail(snapshot, detail, self._payload_max_chars),
            note=(
                "Live lookup via dispatch API: "
                "GetLastReservationStatusByPhone + GetReservationByRid."
            ),
            status_lookup=status,
            detail_lookup=detail,
        )
