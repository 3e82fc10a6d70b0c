"""Schema-tolerant extraction of fields from dispatch API payloads.

The dispatch backend does not publish a stable schema: the same logical field
shows up as ``RID``, ``rid`` or ``ReservationId`` depending on the endpoint
and deployment.  Each logical field is therefore mapped to an ordered tuple of
accepted spellings and the first present, non-blank value wins.

Everything here is pure (``str`` in, plain data out) and never raises except
:func:`extract_token`, whose failure the credential cache must surface.
"""

from __future__ import annotations

import json
from typing import Any

from calltaker.services.errors import ExtractionError
from calltaker.services.models import VoucherAccount

# ── Accepted spellings per logical field ─────────────────────────────

TOKEN_FIELDS = ("token", "jwt", "access_token", "accessToken")

STATUS_FIELDS: dict[str, tuple[str, ...]] = {
    "reservation_id": ("RID", "rid", "Rid", "reservationId", "ReservationId"),
    "status": ("status", "Status", "reservationStatus", "ReservationStatus"),
    "pickup": ("pickup", "Pickup", "pickupAddress", "PickupAddress"),
    "dropoff": ("dropoff", "Dropoff", "dropoffAddress", "DropoffAddress"),
    "scheduled_time": ("time", "Time", "scheduledTime", "ScheduledTime"),
}

DETAIL_FIELDS: dict[str, tuple[str, ...]] = {
    "reservation_id": ("RID", "rid", "Rid", "ReservationId", "reservationId"),
    "status": ("Status", "status", "ReservationStatus", "reservationStatus"),
    "pickup": ("PUAddress", "PickupAddress", "pickupAddress", "Pickup", "pickup"),
    "dropoff": ("DOAddress", "DropoffAddress", "dropoffAddress", "Dropoff", "dropoff"),
    # PUTime first, EnteredTime only when there is no pickup time
    "scheduled_time": (
        "PUTime", "puTime", "PickupTime", "pickupTime",
        "EnteredTime", "enteredTime", "Time", "time",
    ),
    "passenger_name": ("Name", "PassengerName", "passengerName"),
    "driver_name": ("DriverName", "driverName"),
    "vehicle_number": (
        "TagNum", "tagNum", "VehicleNumber", "vehicleNumber", "CabNumber", "cabNumber",
    ),
    "payment_type": (
        "PaymentType", "paymentType", "PayType", "payType",
        "MethodOfPayment", "methodOfPayment",
    ),
}

ACCOUNT_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("ID", "Id", "id"),
    "company": ("Company", "company", "Client", "client", "Name", "name"),
    "abbreviation": ("Abbreviation", "abbreviation", "Abbrev", "abbrev", "Short", "short"),
}

_WRAPPER_KEYS = ("data", "result")

TRUNCATION_MARKER = "…(truncated)"


# ── Generic helpers ──────────────────────────────────────────────────


def load_json(raw: str | None) -> Any | None:
    """Parse *raw* as JSON, returning ``None`` for blank or invalid input."""
    if not raw or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return None


def unwrap_object(doc: Any) -> Any:
    """Step into a ``data``/``result`` envelope when it holds an object."""
    if isinstance(doc, dict):
        for key in _WRAPPER_KEYS:
            inner = doc.get(key)
            if isinstance(inner, dict):
                return inner
    return doc


def first_value(obj: Any, names: tuple[str, ...], *, lenient: bool = False) -> str | None:
    """Return the first non-blank value among *names* in *obj* as a string.

    Strings and numbers are always accepted.  With ``lenient=True`` any other
    non-null value (booleans, nested objects) is serialised as JSON.
    """
    if not isinstance(obj, dict):
        return None

    for name in names:
        if name not in obj:
            continue
        value = obj[name]
        if isinstance(value, str):
            text = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            text = str(value)
        elif lenient and value is not None:
            text = json.dumps(value)
        else:
            continue
        if text.strip():
            return text
    return None


def map_fields(
    obj: Any, fields: dict[str, tuple[str, ...]], *, lenient: bool = False,
) -> dict[str, str | None]:
    """Apply :func:`first_value` for every logical field in *fields*."""
    return {key: first_value(obj, names, lenient=lenient) for key, names in fields.items()}


# ── Per-response-shape mappers ───────────────────────────────────────


def parse_status_record(raw: str | None) -> dict[str, str | None]:
    """Fields of a by-phone status response; missing fields are ``None``."""
    return map_fields(unwrap_object(load_json(raw)), STATUS_FIELDS, lenient=True)


def parse_reservation_detail(raw: str | None) -> dict[str, str | None]:
    """Fields of a by-RID detail response; missing fields are ``None``."""
    return map_fields(unwrap_object(load_json(raw)), DETAIL_FIELDS)


def parse_accounts(raw: str | None) -> list[VoucherAccount]:
    """Accounts from a bare array or a ``data``/``result``-wrapped array.

    Items without an id *and* without an abbreviation are dropped; anything
    that is not a list of objects yields an empty list.
    """
    doc = load_json(raw)
    if isinstance(doc, dict):
        for key in _WRAPPER_KEYS:
            if key in doc:
                doc = doc[key]
                break
    if not isinstance(doc, list):
        return []

    accounts: list[VoucherAccount] = []
    for item in doc:
        if not isinstance(item, dict):
            continue
        values = map_fields(item, ACCOUNT_FIELDS, lenient=True)
        if not values["id"] and not values["abbreviation"]:
            continue
        accounts.append(
            VoucherAccount(
                id=values["id"] or "",
                company=values["company"] or "",
                abbreviation=values["abbreviation"] or "",
            )
        )
    return accounts


def extract_token(raw: str | None) -> str:
    """Pull the bearer token out of an authentication response body.

    Accepts a raw JWT (optionally JSON-quoted, at least two ``.`` separators)
    or a JSON object exposing it under one of :data:`TOKEN_FIELDS`.
    """
    if not raw or not raw.strip():
        raise ExtractionError("authentication response body was empty")

    candidate = raw.strip().strip('"')
    if candidate.count(".") >= 2 and not candidate.startswith(("{", "[")):
        return candidate

    doc = load_json(raw)
    if isinstance(doc, dict):
        for name in TOKEN_FIELDS:
            value = doc.get(name)
            if isinstance(value, str) and value.strip():
                return value.strip()

    raise ExtractionError("authentication succeeded but no token could be extracted")


def truncate_for_prompt(value: str | None, max_chars: int) -> str:
    """Cap *value* at *max_chars*, appending a visible marker when cut.

    Idempotent: truncating an already-truncated string at the same cap
    returns it unchanged.
    """
    if not value or max_chars <= 0:
        return ""
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + TRUNCATION_MARKER
