"""Company / agent / prompt directory backed by three JSON files.

  agents.json     {"Agents":    {"<uid>": {"Alias", "OperatorNumber", "Duid", "AgentEmail"}}}
  companies.json  {"Companies": {"<extension>": {"CompanyName", "GreetingCompanyName",
                                                 "ServiceArea", "Tenant"}}}
  prompts.json    {"Prompts":   {"InitialCallTemplate", "OngoingCallTemplate"}}

The files are re-read on every call so dispatch staff can edit them without a
restart.  They are small, so the cost is negligible next to the upstream calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calltaker.services.errors import ConfigurationError

logger = logging.getLogger(__name__)

AGENTS_FILE = "agents.json"
COMPANIES_FILE = "companies.json"
PROMPTS_FILE = "prompts.json"

DEFAULT_ALIAS = "Operator"
DEFAULT_OPERATOR_NUMBER = "000"


class _FileModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class AgentConfig(_FileModel):
    alias: str = Field(DEFAULT_ALIAS, alias="Alias")
    operator_number: str = Field(DEFAULT_OPERATOR_NUMBER, alias="OperatorNumber")
    duid: str = Field("0", alias="Duid")
    # Principal for dispatch API auth (with the shared password)
    agent_email: str = Field("", alias="AgentEmail")


class CompanyConfig(_FileModel):
    company_name: str = Field("Unknown", alias="CompanyName")
    greeting_company_name: str = Field("your company", alias="GreetingCompanyName")
    service_area: str = Field("", alias="ServiceArea")
    tenant: str = Field("koach", alias="Tenant")


class PromptsConfig(_FileModel):
    initial_call_template: str = Field("", alias="InitialCallTemplate")
    ongoing_call_template: str = Field("", alias="OngoingCallTemplate")


class _AgentsFile(_FileModel):
    agents: dict[str, AgentConfig] = Field(default_factory=dict, alias="Agents")


class _CompaniesFile(_FileModel):
    companies: dict[str, CompanyConfig] = Field(default_factory=dict, alias="Companies")


class _PromptsFile(_FileModel):
    prompts: PromptsConfig = Field(default_factory=PromptsConfig, alias="Prompts")


@dataclass(frozen=True)
class AgentIdentity:
    """Who is answering: fills the ``{ALIAS}``/``{OPNUM}`` greeting slots."""

    uid: str
    alias: str
    operator_number: str


def normalize_extension(extension: str | None) -> str:
    """``"(4100)"`` -> ``"4100"``: keep digits only."""
    return "".join(ch for ch in (extension or "") if ch.isdigit())


@dataclass(frozen=True)
class Directory:
    agents: dict[str, AgentConfig]
    companies: dict[str, CompanyConfig]
    prompts: PromptsConfig

    def resolve_company(self, extension: str | None) -> CompanyConfig | None:
        ext = normalize_extension(extension)
        if not ext:
            return None
        return self.companies.get(ext)

    def resolve_agent(self, agent_uid: str | None) -> AgentIdentity:
        """Agent by UID; unknown or blank UIDs answer as Operator/000."""
        uid = (agent_uid or "").strip()
        cfg = self.agents.get(uid) if uid else None
        if cfg is None:
            return AgentIdentity(uid, DEFAULT_ALIAS, DEFAULT_OPERATOR_NUMBER)
        return AgentIdentity(
            uid, cfg.alias or DEFAULT_ALIAS, cfg.operator_number or DEFAULT_OPERATOR_NUMBER,
        )

    def agent_email(self, agent_uid: str | None) -> str:
        """Dispatch principal for the agent, or ``""`` when unknown."""
        uid = (agent_uid or "").strip()
        cfg = self.agents.get(uid) if uid else None
        return cfg.agent_email.strip() if cfg is not None else ""

    @property
    def company_names(self) -> list[str]:
        return [c.company_name for c in self.companies.values()]


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"{path.name} not found in {path.parent}") from exc
    except ValueError as exc:
        raise ConfigurationError(f"{path.name} is not valid JSON: {exc}") from exc


def load_directory(config_dir: str | Path) -> Directory:
    """Read and validate the three directory files.

    Raises:
        ConfigurationError: a file is missing, is not JSON, or has the wrong shape.
    """
    base = Path(config_dir)
    try:
        agents = _AgentsFile.model_validate(_read_json(base / AGENTS_FILE))
        companies = _CompaniesFile.model_validate(_read_json(base / COMPANIES_FILE))
        prompts = _PromptsFile.model_validate(_read_json(base / PROMPTS_FILE))
    except ValidationError as exc:
        raise ConfigurationError(f"Directory files under {base} are malformed: {exc}") from exc

    logger.debug(
        "Directory loaded from %s: %d agents, %d companies",
        base, len(agents.agents), len(companies.companies),
    )
    return Directory(
        agents=agents.agents, companies=companies.companies, prompts=prompts.prompts,
    )
