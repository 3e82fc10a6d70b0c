"""System prompt assembly for the call-taker model.

The lifecycle template (initial vs. ongoing call) comes from prompts.json;
everything the model must treat as fact is appended as ``SYSTEM DATA``.
"""

from __future__ import annotations

from collections.abc import Sequence

from calltaker.directory import AgentIdentity, CompanyConfig, PromptsConfig
from calltaker.services.models import ReservationLookupResult, VoucherAccount
from calltaker.services.parsing import truncate_for_prompt

FALLBACK_RULES = (
    "You are a professional taxi dispatch call taker. Be polite, concise, "
    "and professional. Ask ONE question at a time."
)

GREETING_TEMPLATE = (
    "Thank you for calling {company}. My name is {{ALIAS}}, and my operator "
    "number is {{OPNUM}}. How may I assist you today?"
)

RESERVATION_GUARDRAIL = (
    "GUARDRAIL: You must treat the SYSTEM DATA above as the only source of truth "
    "for reservation existence/status. If SYSTEM DATA says no active reservation "
    "was found, do NOT claim you found one."
)

MAX_ACCOUNTS_IN_PROMPT = 50
ACCOUNTS_CONTEXT_MAX_CHARS = 2500


def apply_agent_to_greeting(template: str, agent: AgentIdentity) -> str:
    return template.replace("{ALIAS}", agent.alias).replace("{OPNUM}", agent.operator_number)


def _reservation_context(lookup: ReservationLookupResult) -> str:
    snap = lookup.snapshot
    if not lookup.found or snap is None:
        return (
            "SYSTEM DATA: No active reservation was found for this caller "
            "(or lookup not available yet)."
        )

    parts = [
        "SYSTEM DATA: An active reservation WAS found for this caller. ",
        f"ReservationId={snap.reservation_id}; ",
        f"Status={snap.status}; ",
        f"Pickup={snap.pickup}; ",
        f"Dropoff={snap.dropoff}; ",
        f"ScheduledTime={snap.scheduled_time}; ",
    ]
    optional = (
        ("PassengerName", snap.passenger_name),
        ("VehicleNumber", snap.vehicle_number),
        ("DriverName", snap.driver_name),
        ("PaymentType", snap.payment_type),
    )
    parts.extend(f"{label}={value}; " for label, value in optional if value.strip())
    if snap.full_reservation_raw_json.strip():
        parts.append(f"FullReservationJson={snap.full_reservation_raw_json}")
    return "".join(parts)


def _accounts_context(accounts: Sequence[VoucherAccount]) -> str:
    if not accounts:
        return "SYSTEM DATA: VoucherAccounts list is empty or not available."
    listed = " | ".join(
        f"Id={a.id}, Abbreviation={a.abbreviation}, Company={a.company}"
        for a in accounts[:MAX_ACCOUNTS_IN_PROMPT]
    )
    return truncate_for_prompt(
        f"SYSTEM DATA: VoucherAccounts (Id/Abbreviation/Company): {listed}",
        ACCOUNTS_CONTEXT_MAX_CHARS,
    )


def build_system_prompt(
    company: CompanyConfig,
    agent: AgentIdentity,
    caller_phone: str | None,
    prompts: PromptsConfig,
    lookup: ReservationLookupResult,
    accounts: Sequence[VoucherAccount],
    is_call_connect: bool,
) -> str:
    """Return the full system prompt for one caller turn."""
    greeting = apply_agent_to_greeting(
        GREETING_TEMPLATE.format(company=company.greeting_company_name), agent,
    )

    base_rules = prompts.initial_call_template if is_call_connect else prompts.ongoing_call_template
    if not base_rules.strip():
        base_rules = FALLBACK_RULES
    base_rules = base_rules.replace("{{GREETING}}", greeting)

    if caller_phone and caller_phone.strip():
        caller_context = f"SYSTEM DATA: CallerPhone is available and is {caller_phone}."
    else:
        caller_context = "SYSTEM DATA: CallerPhone is NOT available."

    company_context = f"You are answering for {company.company_name}. "
    if company.service_area.strip():
        company_context += f"Service area is {company.service_area}. "

    return " ".join([
        base_rules,
        caller_context,
        _reservation_context(lookup),
        _accounts_context(accounts),
        RESERVATION_GUARDRAIL,
        company_context,
    ])


def unknown_company_reply(company_names: Sequence[str]) -> str:
    """What to say when the dialled extension maps to no company."""
    if not company_names:
        return (
            "Thanks for calling. I want to make sure I connect you to the right "
            "company. Which company are you calling for?"
        )
    if len(company_names) == 1:
        choices = company_names[0]
    else:
        choices = ", ".join(company_names[:-1]) + f", or {company_names[-1]}"
    return (
        "Thanks for calling. I want to make sure I connect you to the right "
        f"company. Are you calling for {choices}?"
    )
