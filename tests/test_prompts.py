"""Tests for system prompt assembly."""

from __future__ import annotations

from calltaker.directory import AgentIdentity, CompanyConfig, PromptsConfig
from calltaker.prompts import (
    ACCOUNTS_CONTEXT_MAX_CHARS,
    FALLBACK_RULES,
    MAX_ACCOUNTS_IN_PROMPT,
    RESERVATION_GUARDRAIL,
    build_system_prompt,
    unknown_company_reply,
)
from calltaker.services.models import (
    ReservationLookupResult,
    ReservationSnapshot,
    VoucherAccount,
)
from calltaker.services.parsing import TRUNCATION_MARKER

COMPANY = CompanyConfig(
    CompanyName="Silver Cab of PG",
    GreetingCompanyName="Silver Cab",
    ServiceArea="Prince George's County",
)
AGENT = AgentIdentity(uid="7", alias="Dana", operator_number="212")
PROMPTS = PromptsConfig(
    InitialCallTemplate="Open with: {{GREETING}}",
    OngoingCallTemplate="Continue the call.",
)
NOT_FOUND = ReservationLookupResult.not_found("CallerPhone missing; reservation lookup skipped.")


def _prompt(**overrides) -> str:
    kwargs = {
        "company": COMPANY,
        "agent": AGENT,
        "caller_phone": "3015550100",
        "prompts": PROMPTS,
        "lookup": NOT_FOUND,
        "accounts": (),
        "is_call_connect": True,
    }
    kwargs.update(overrides)
    return build_system_prompt(**kwargs)


class TestLifecycleTemplates:
    def test_initial_template_gets_agent_greeting(self):
        prompt = _prompt()
        assert prompt.startswith(
            "Open with: Thank you for calling Silver Cab. My name is Dana, "
            "and my operator number is 212."
        )

    def test_ongoing_template_used_after_connect(self):
        assert _prompt(is_call_connect=False).startswith("Continue the call.")

    def test_blank_template_falls_back(self):
        prompts = PromptsConfig(InitialCallTemplate=" ", OngoingCallTemplate="x")
        assert _prompt(prompts=prompts).startswith(FALLBACK_RULES)


class TestSystemData:
    def test_caller_phone_context(self):
        assert "CallerPhone is available and is 3015550100." in _prompt()
        assert "CallerPhone is NOT available." in _prompt(caller_phone="")

    def test_not_found_reservation_and_guardrail(self):
        prompt = _prompt()
        assert "No active reservation was found for this caller" in prompt
        assert RESERVATION_GUARDRAIL in prompt
        assert "You are answering for Silver Cab of PG. Service area is Prince George's County." in prompt

    def test_found_reservation_fields(self):
        lookup = ReservationLookupResult(
            found=True,
            snapshot=ReservationSnapshot(
                reservation_id="R1",
                status="Dispatched",
                pickup="1 Main St",
                dropoff="BWI",
                scheduled_time="10:00",
                driver_name="Sam",
                full_reservation_raw_json='{"RID": "R1"}',
            ),
            note="Live lookup via dispatch API.",
        )
        prompt = _prompt(lookup=lookup)
        assert "An active reservation WAS found" in prompt
        assert "ReservationId=R1; Status=Dispatched; Pickup=1 Main St; Dropoff=BWI;" in prompt
        assert "DriverName=Sam;" in prompt
        assert "PassengerName=" not in prompt
        assert 'FullReservationJson={"RID": "R1"}' in prompt

    def test_empty_accounts(self):
        assert "VoucherAccounts list is empty or not available." in _prompt()

    def test_accounts_are_capped(self):
        accounts = [
            VoucherAccount(id=str(i), company=f"Company {i}", abbreviation=f"A{i}")
            for i in range(MAX_ACCOUNTS_IN_PROMPT + 10)
        ]
        prompt = _prompt(accounts=accounts)
        assert "Id=0, Abbreviation=A0, Company=Company 0" in prompt
        assert f"Abbreviation=A{MAX_ACCOUNTS_IN_PROMPT}," not in prompt

    def test_long_account_list_is_truncated(self):
        accounts = [VoucherAccount(id=str(i), company="C" * 200, abbreviation="X") for i in range(20)]
        prompt = _prompt(accounts=accounts)
        marker_at = prompt.index(TRUNCATION_MARKER)
        section_start = prompt.index("SYSTEM DATA: VoucherAccounts")
        assert marker_at - section_start == ACCOUNTS_CONTEXT_MAX_CHARS


class TestUnknownCompanyReply:
    def test_lists_known_companies(self):
        reply = unknown_company_reply(["Silver Cab of PG", "Diamond Cab", "Yellow Cab"])
        assert reply.endswith("Are you calling for Silver Cab of PG, Diamond Cab, or Yellow Cab?")

    def test_single_company(self):
        assert unknown_company_reply(["Silver Cab"]).endswith("Are you calling for Silver Cab?")

    def test_no_companies(self):
        assert unknown_company_reply([]).endswith("Which company are you calling for?")
