"""Per-turn call-taker pipeline.

Architecture:
  One :class:`CallTakerAgent` lives for the whole process and owns the shared
  state every request uses: the HTTP transport, the credential cache and the
  voucher-account cache.  Each caller turn runs:

    1. **directory**     — resolve company by extension, agent by UID
    2. **auth**          — bearer token for (tenant, agent email), cached
    3. **accounts**      — voucher accounts for the tenant, cached, best-effort
    4. **reservation**   — status-by-phone then detail-by-RID, best-effort
    5. **prompt + LLM**  — one Responses API call with everything as SYSTEM DATA

  Steps 2-4 never fail the turn: their problems become notes in the prompt
  and in the routing block of the reply.  Only configuration problems and
  LLM errors are raised to the HTTP layer.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import asdict

from calltaker.api.schemas import (
    AgentMessageRequest,
    AgentMessageResponse,
    ReservationSnapshotModel,
    RoutingInfo,
    VoucherAccountModel,
    VoucherAccountsResponse,
)
from calltaker.config import (
    ACCOUNTS_CACHE_TTL_MINUTES,
    CALLTAKER_CONFIG_DIR,
    DISPATCH_AGENT_SHARED_PASSWORD,
    DISPATCH_API_BASE_URL,
    DISPATCH_REQUEST_TIMEOUT_SECONDS,
    DISPATCH_TOKEN_TTL_MINUTES,
    OPENAI_API_KEY,
    OPENAI_MODEL,
    OPENAI_RESPONSES_URL,
    RESERVATION_PAYLOAD_MAX_CHARS,
)
from calltaker.directory import Directory, load_directory
from calltaker.prompts import build_system_prompt, unknown_company_reply
from calltaker.services.accounts_cache import VoucherAccountsCache
from calltaker.services.auth import AuthTokenCache
from calltaker.services.dispatch_client import DispatchClient
from calltaker.services.errors import AuthError, ConfigurationError, PreconditionError
from calltaker.services.llm import ResponsesClient
from calltaker.services.models import ReservationLookupResult, VoucherAccount
from calltaker.services.reservations import ReservationLookup
from calltaker.services.transport import HttpTransport

logger = logging.getLogger(__name__)

CALL_CONNECTED_MESSAGE = "Call connected. Begin the call."


class CallTakerAgent:
    """Owns the long-lived caches and runs one caller turn at a time per request."""

    def __init__(
        self,
        *,
        tokens: AuthTokenCache,
        accounts: VoucherAccountsCache,
        reservations: ReservationLookup,
        llm: ResponsesClient,
        directory_loader: Callable[[], Directory],
        base_url: str,
        transports: tuple[HttpTransport, ...] = (),
    ):
        self.tokens = tokens
        self.accounts = accounts
        self._reservations = reservations
        self._llm = llm
        self._load_directory = directory_loader
        self._base_url = base_url
        self._transports = transports

    # ── Helpers ──────────────────────────────────────────────────────

    async def _directory(self) -> Directory:
        return await asyncio.to_thread(self._load_directory)

    async def _acquire_token(self, tenant: str, principal: str) -> tuple[bool, str | None]:
        """Warm the credential cache; report (acquired, safe error)."""
        if not principal:
            return False, "AgentEmail is missing for this AgentUid in agents.json."
        try:
            await self.tokens.acquire(self._base_url, tenant, principal)
        except AuthError as exc:
            logger.warning("Dispatch auth failed for tenant=%s: %s", tenant, exc.reason)
            return False, exc.reason
        return True, None

    # ── Public API ───────────────────────────────────────────────────

    async def handle_message(self, request: AgentMessageRequest) -> AgentMessageResponse:
        """Produce the agent's reply for one caller turn.

        Raises:
            ConfigurationError: missing LLM key or unusable directory files.
            UpstreamStatusError / TransportError: the LLM call itself failed.
        """
        user_message = (request.message or "").strip()
        is_call_connect = not user_message

        if not self._llm.configured:
            raise ConfigurationError("OpenAI API key is not configured. Set OPENAI_API_KEY.")

        directory = await self._directory()
        if not directory.companies:
            raise ConfigurationError(
                "companies.json did not load correctly (0 companies). "
                'Check that the root is { "Companies": { ... } }.'
            )
        prompts = directory.prompts
        if not prompts.initial_call_template.strip() or not prompts.ongoing_call_template.strip():
            raise ConfigurationError(
                "prompts.json did not load correctly "
                "(InitialCallTemplate or OngoingCallTemplate is empty)."
            )

        company = directory.resolve_company(request.extension)
        if company is None:
            # Don't let the model guess the company
            logger.info("Unknown extension %r; asking caller for the company", request.extension)
            return AgentMessageResponse(
                response=unknown_company_reply(directory.company_names),
                routing=RoutingInfo(
                    company="Unknown",
                    extension_received=request.extension or "missing",
                    caller_phone=request.caller_phone,
                ),
            )

        agent = directory.resolve_agent(request.agent_uid)
        principal = directory.agent_email(request.agent_uid)

        token_acquired, auth_error = await self._acquire_token(company.tenant, principal)

        accounts: tuple[VoucherAccount, ...] = ()
        if token_acquired:
            accounts = await self.accounts.get(self._base_url, company.tenant, principal)

        lookup = await self._reservations.lookup(
            base_url=self._base_url,
            tenant=company.tenant,
            principal=principal,
            caller_phone=request.caller_phone,
            credential_available=token_acquired,
            auth_error=auth_error,
        )

        system_prompt = build_system_prompt(
            company, agent, request.caller_phone, prompts, lookup, accounts, is_call_connect,
        )
        reply = await self._llm.create(
            system_prompt,
            CALL_CONNECTED_MESSAGE if is_call_connect else user_message,
            model=request.model,
        )

        return AgentMessageResponse(
            response=reply.text or reply.raw,
            routing=RoutingInfo(
                company=company.company_name,
                extension_received=request.extension,
                caller_phone=request.caller_phone,
                agent_uid=request.agent_uid,
                agent_alias=agent.alias,
                operator_number=agent.operator_number,
                reservation_snapshot=(
                    ReservationSnapshotModel.model_validate(lookup.snapshot)
                    if lookup.snapshot is not None
                    else None
                ),
                dispatch_token_acquired=token_acquired,
                dispatch_auth_error=auth_error,
                last_trip_by_phone=(
                    asdict(lookup.status_lookup) if lookup.status_lookup is not None else None
                ),
                reservation_by_rid=(
                    lookup.detail_lookup.summary() if lookup.detail_lookup is not None else None
                ),
                reservation_lookup_note=lookup.note,
            ),
        )

    async def cached_accounts(
        self, extension: str | None, agent_uid: str | None,
    ) -> VoucherAccountsResponse:
        """Voucher accounts as the model would see them (refreshes only if stale).

        Raises:
            PreconditionError: unknown extension or agent without an email.
        """
        directory = await self._directory()
        company = directory.resolve_company(extension)
        if company is None:
            raise PreconditionError(f"Unknown/missing extension: {extension!r}")
        principal = directory.agent_email(agent_uid)
        if not principal:
            raise PreconditionError(f"AgentEmail missing for agentUid: {agent_uid!r}")

        accounts = await self.accounts.get(self._base_url, company.tenant, principal)
        return VoucherAccountsResponse(
            company=company.company_name,
            tenant=company.tenant,
            count=len(accounts),
            accounts=[VoucherAccountModel.model_validate(a) for a in accounts],
        )

    async def lookup_reservation(
        self, extension: str | None, agent_uid: str | None, caller_phone: str | None,
    ) -> ReservationLookupResult:
        """Only the reservation part of a turn (used by the CLI).

        Raises:
            PreconditionError: unknown extension.
        """
        directory = await self._directory()
        company = directory.resolve_company(extension)
        if company is None:
            raise PreconditionError(f"Unknown/missing extension: {extension!r}")
        principal = directory.agent_email(agent_uid)
        token_acquired, auth_error = await self._acquire_token(company.tenant, principal)
        return await self._reservations.lookup(
            base_url=self._base_url,
            tenant=company.tenant,
            principal=principal,
            caller_phone=caller_phone,
            credential_available=token_acquired,
            auth_error=auth_error,
        )

    async def aclose(self) -> None:
        for transport in self._transports:
            await transport.aclose()


# ── Assembly ─────────────────────────────────────────────────────────


def create_call_taker_agent() -> CallTakerAgent:
    """Build the process-wide agent from ``calltaker.config``.

    Call once (the FastAPI lifespan does) and share the instance: the caches
    only deduplicate refreshes among callers that share it.
    """
    dispatch_transport = HttpTransport(timeout=DISPATCH_REQUEST_TIMEOUT_SECONDS, service="dispatch")
    llm_transport = HttpTransport(timeout=60.0, service="openai")

    tokens = AuthTokenCache(
        dispatch_transport,
        shared_secret=DISPATCH_AGENT_SHARED_PASSWORD,
        ttl_seconds=DISPATCH_TOKEN_TTL_MINUTES * 60,
    )
    client = DispatchClient(dispatch_transport, tokens)
    agent = CallTakerAgent(
        tokens=tokens,
        accounts=VoucherAccountsCache(client, ttl_seconds=ACCOUNTS_CACHE_TTL_MINUTES * 60),
        reservations=ReservationLookup(client, payload_max_chars=RESERVATION_PAYLOAD_MAX_CHARS),
        llm=ResponsesClient(
            llm_transport,
            api_key=OPENAI_API_KEY,
            url=OPENAI_RESPONSES_URL,
            default_model=OPENAI_MODEL,
        ),
        directory_loader=functools.partial(load_directory, CALLTAKER_CONFIG_DIR),
        base_url=DISPATCH_API_BASE_URL,
        transports=(dispatch_transport, llm_transport),
    )
    logger.debug(
        "Call-taker agent assembled — dispatch: %s, token TTL: %dm, accounts TTL: %dm",
        DISPATCH_API_BASE_URL, DISPATCH_TOKEN_TTL_MINUTES, ACCOUNTS_CACHE_TTL_MINUTES,
    )
    return agent
