"""Plain records exchanged between the dispatch client, caches and lookup."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class VoucherAccount:
    """A voucher (corporate) account the caller may bill a trip to.

    ``id`` is the upstream internal id, ``abbreviation`` is what dispatchers
    see in the reservation dropdown.
    """

    id: str = ""
    company: str = ""
    abbreviation: str = ""


@dataclass
class AccountsResult:
    """Outcome of one account-list fetch.

    ``success`` means the HTTP call succeeded; ``accounts`` may still be empty.
    """

    success: bool = False
    tenant: str = ""
    accounts: list[VoucherAccount] = field(default_factory=list)
    raw_json: str = ""
    error: str | None = None


@dataclass
class StatusLookupResult:
    """Thin status record from the by-phone lookup."""

    success: bool = False
    tenant: str = ""
    phone: str = ""
    raw_json: str = ""
    reservation_id: str | None = None
    status: str | None = None
    pickup: str | None = None
    dropoff: str | None = None
    scheduled_time: str | None = None
    error: str | None = None


@dataclass
class ReservationDetailResult:
    """Authoritative reservation record from the by-RID lookup."""

    success: bool = False
    tenant: str = ""
    rid: str = ""
    raw_json: str = ""
    reservation_id: str | None = None
    status: str | None = None
    pickup: str | None = None
    dropoff: str | None = None
    scheduled_time: str | None = None
    passenger_name: str | None = None
    vehicle_number: str | None = None
    driver_name: str | None = None
    payment_type: str | None = None
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        """Debug view without the raw payload."""
        data = asdict(self)
        data.pop("raw_json")
        return data


@dataclass
class ReservationSnapshot:
    """Merged reservation view handed to the model.  Built per request."""

    reservation_id: str = ""
    status: str = ""
    pickup: str = ""
    dropoff: str = ""
    scheduled_time: str = ""
    passenger_name: str = ""
    vehicle_number: str = ""
    driver_name: str = ""
    payment_type: str = ""
    full_reservation_raw_json: str = ""


@dataclass
class ReservationLookupResult:
    """``found``/not-found plus a note explaining how we got there.

    The stage results are kept for the debug block of the HTTP response.
    """

    found: bool
    snapshot: ReservationSnapshot | None = None
    note: str = ""
    status_lookup: StatusLookupResult | None = None
    detail_lookup: ReservationDetailResult | None = None

    @classmethod
    def not_found(cls, note: str, **stages: Any) -> ReservationLookupResult:
        return cls(found=False, snapshot=None, note=note, **stages)
