"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AgentMessageRequest(BaseModel):
    """One caller turn forwarded by the telephony front end.

    ``message`` is empty on the first hit of a call ("call connected").
    Both snake_case and camelCase keys are accepted.
    """

    message: str | None = Field(None, max_length=4000, description="What the caller said")
    model: str | None = Field(None, description="Optional model override")
    extension: str | None = Field(None, description="Dialled extension / hunt group")
    agent_uid: str | None = Field(
        None, validation_alias=AliasChoices("agent_uid", "agentUid"),
    )
    caller_phone: str | None = Field(
        None, validation_alias=AliasChoices("caller_phone", "callerPhone"),
    )


class ReservationSnapshotModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class RoutingInfo(BaseModel):
    """Routing and debug details returned next to the agent's reply.

    Never contains the dispatch password or a bearer token.
    """

    company: str
    extension_received: str | None = None
    caller_phone: str | None = None
    agent_uid: str | None = None
    agent_alias: str | None = None
    operator_number: str | None = None
    reservation_snapshot: ReservationSnapshotModel | None = None
    dispatch_token_acquired: bool | None = None
    dispatch_auth_error: str | None = None
    last_trip_by_phone: dict[str, Any] | None = None
    reservation_by_rid: dict[str, Any] | None = None
    reservation_lookup_note: str | None = None


class AgentMessageResponse(BaseModel):
    response: str = Field(..., description="Text for the voice agent to speak")
    routing: RoutingInfo


class VoucherAccountModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company: str
    abbreviation: str


class VoucherAccountsResponse(BaseModel):
    company: str
    tenant: str
    count: int
    accounts: list[VoucherAccountModel]


class InvalidateResponse(BaseModel):
    tenant: str | None = None
    invalidated: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "calltaker-agent"
