"""Tests for the agents / companies / prompts directory files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from calltaker.directory import load_directory, normalize_extension
from calltaker.services.errors import ConfigurationError

REPO_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


def _write_directory(base: Path, *, agents=None, companies=None, prompts=None) -> Path:
    files = {
        "agents.json": agents if agents is not None else {
            "Agents": {"7": {"Alias": "Dana", "OperatorNumber": 212, "AgentEmail": " dana@x.com "}},
        },
        "companies.json": companies if companies is not None else {
            "Companies": {"4100": {"CompanyName": "Silver Cab of PG", "Tenant": "koach"}},
        },
        "prompts.json": prompts if prompts is not None else {
            "Prompts": {"InitialCallTemplate": "Greet: {{GREETING}}", "OngoingCallTemplate": "Go on."},
        },
    }
    for name, content in files.items():
        (base / name).write_text(json.dumps(content), encoding="utf-8")
    return base


class TestLoadDirectory:
    def test_loads_and_coerces_values(self, tmp_path):
        directory = load_directory(_write_directory(tmp_path))

        agent = directory.agents["7"]
        assert agent.alias == "Dana"
        assert agent.operator_number == "212"
        assert directory.companies["4100"].company_name == "Silver Cab of PG"
        assert directory.prompts.initial_call_template == "Greet: {{GREETING}}"

    def test_company_defaults(self, tmp_path):
        directory = load_directory(
            _write_directory(tmp_path, companies={"Companies": {"4300": {"CompanyName": "Yellow"}}}),
        )
        company = directory.companies["4300"]
        assert company.tenant == "koach"
        assert company.greeting_company_name == "your company"

    def test_missing_file_raises(self, tmp_path):
        _write_directory(tmp_path)
        (tmp_path / "prompts.json").unlink()
        with pytest.raises(ConfigurationError, match="prompts.json not found"):
            load_directory(tmp_path)

    def test_invalid_json_raises(self, tmp_path):
        _write_directory(tmp_path)
        (tmp_path / "agents.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_directory(tmp_path)

    def test_wrong_shape_raises(self, tmp_path):
        _write_directory(tmp_path, companies={"Companies": ["4100"]})
        with pytest.raises(ConfigurationError, match="malformed"):
            load_directory(tmp_path)

    def test_bundled_sample_files_load(self):
        directory = load_directory(REPO_CONFIG_DIR)
        assert directory.resolve_company("4100") is not None
        assert "{{GREETING}}" in directory.prompts.initial_call_template


class TestResolution:
    @pytest.fixture
    def directory(self, tmp_path):
        return load_directory(_write_directory(tmp_path))

    @pytest.mark.parametrize("extension", ["4100", " (4100) ", "41-00"])
    def test_extension_is_normalised(self, directory, extension):
        assert directory.resolve_company(extension).company_name == "Silver Cab of PG"

    @pytest.mark.parametrize("extension", [None, "", "9999", "ext"])
    def test_unknown_extension(self, directory, extension):
        assert directory.resolve_company(extension) is None

    def test_known_agent(self, directory):
        agent = directory.resolve_agent(" 7 ")
        assert (agent.alias, agent.operator_number) == ("Dana", "212")
        assert directory.agent_email("7") == "dana@x.com"

    @pytest.mark.parametrize("uid", [None, "", "99"])
    def test_unknown_agent_defaults(self, directory, uid):
        agent = directory.resolve_agent(uid)
        assert (agent.alias, agent.operator_number) == ("Operator", "000")
        assert directory.agent_email(uid) == ""

    def test_company_names(self, directory):
        assert directory.company_names == ["Silver Cab of PG"]

    def test_normalize_extension(self):
        assert normalize_extension("x4-1 0 0") == "4100"
