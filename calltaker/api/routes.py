"""FastAPI route definitions for the call-taker API."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from calltaker.agent import CallTakerAgent
from calltaker.api.schemas import (
    AgentMessageRequest,
    AgentMessageResponse,
    HealthResponse,
    InvalidateResponse,
    VoucherAccountsResponse,
)
from calltaker.config import CALLTAKER_ADMIN_TOKEN
from calltaker.services.errors import (
    ConfigurationError,
    PreconditionError,
    TransportError,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request) -> CallTakerAgent:
    """Retrieve the process-wide agent from app state.

    The agent (and with it both caches) is built once during the FastAPI
    lifespan (see ``server.py``) and shared by every request.
    """
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return agent


def _require_admin(x_admin_token: str | None = Header(None)) -> None:
    """Gate the cache-admin routes behind the shared ``X-Admin-Token``."""
    if not CALLTAKER_ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin endpoints are disabled")
    if not x_admin_token or not hmac.compare_digest(
        x_admin_token.encode(), CALLTAKER_ADMIN_TOKEN.encode(),
    ):
        raise HTTPException(status_code=401, detail="Invalid or missing X-Admin-Token header")


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/agent/message", response_model=AgentMessageResponse)
async def agent_message(request: AgentMessageRequest, http_request: Request):
    """Run one caller turn through the call-taker pipeline.

    Dispatch API problems never fail this endpoint; they show up in
    ``routing``.  Configuration and LLM failures do.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        return await agent.handle_message(request)
    except ConfigurationError as e:
        logger.error("[%s] Configuration problem: %s", request_id, e)
        raise HTTPException(status_code=500, detail=str(e)) from e
    except UpstreamStatusError as e:
        logger.error("[%s] %s", request_id, e)
        raise HTTPException(
            status_code=e.status_code or 502,
            detail={"error": str(e), "body": e.body},
        ) from e
    except TransportError as e:
        logger.error("[%s] LLM call failed: %s", request_id, e)
        raise HTTPException(status_code=502, detail="The language model could not be reached.") from e
    except Exception as e:
        # Full traceback stays server-side
        logger.exception("[%s] Error processing agent message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e


@router.get("/debug/vouchers-cached", response_model=VoucherAccountsResponse, tags=["Debug"])
async def debug_vouchers_cached(
    http_request: Request,
    extension: str | None = Query(None),
    agent_uid: str | None = Query(None, alias="agentUid"),
):
    """Voucher accounts for the extension's tenant (refreshes only if expired)."""
    agent = _get_agent(http_request)
    try:
        return await agent.cached_accounts(extension, agent_uid)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post(
    "/admin/accounts-cache/invalidate",
    response_model=InvalidateResponse,
    tags=["Admin"],
    dependencies=[Depends(_require_admin)],
)
async def invalidate_accounts(http_request: Request, tenant: str = Query(..., min_length=1)):
    """Drop one tenant's cached voucher accounts."""
    agent = _get_agent(http_request)
    removed = agent.accounts.invalidate(tenant)
    return InvalidateResponse(tenant=tenant, invalidated=int(removed))


@router.post(
    "/admin/accounts-cache/invalidate-all",
    response_model=InvalidateResponse,
    tags=["Admin"],
    dependencies=[Depends(_require_admin)],
)
async def invalidate_all_accounts(http_request: Request):
    """Drop every tenant's cached voucher accounts."""
    agent = _get_agent(http_request)
    return InvalidateResponse(invalidated=agent.accounts.invalidate_all())
