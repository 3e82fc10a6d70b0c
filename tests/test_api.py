"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from calltaker.api.schemas import (
    AgentMessageResponse,
    RoutingInfo,
    VoucherAccountModel,
    VoucherAccountsResponse,
)
from calltaker.server import app, create_app
from calltaker.services.errors import (
    ConfigurationError,
    PreconditionError,
    TransportError,
    UpstreamStatusError,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
ADMIN = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def mock_agent():
    """Create a mock agent and attach it to app state (mirrors the lifespan)."""
    agent = MagicMock()
    agent.handle_message = AsyncMock(
        return_value=AgentMessageResponse(
            response="Thank you for calling Silver Cab. My name is Dana.",
            routing=RoutingInfo(company="Silver Cab of PG", extension_received="4100"),
        )
    )
    agent.cached_accounts = AsyncMock()
    agent.accounts.invalidate.return_value = True
    agent.accounts.invalidate_all.return_value = 3

    app.state.agent = agent
    yield agent
    app.state.agent = None


@pytest.fixture
def client(mock_agent):
    """FastAPI test client with the mock agent wired up."""
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "calltaker-agent"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestAgentMessageEndpoint:
    def test_returns_reply_and_routing(self, client, mock_agent):
        response = client.post(
            "/agent/message",
            json={"message": "", "extension": "4100", "agentUid": "7", "callerPhone": "3015550100"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["response"].startswith("Thank you for calling Silver Cab")
        assert data["routing"]["company"] == "Silver Cab of PG"

        request = mock_agent.handle_message.call_args.args[0]
        assert request.agent_uid == "7"
        assert request.caller_phone == "3015550100"

    def test_snake_case_keys_accepted(self, client, mock_agent):
        client.post("/agent/message", json={"agent_uid": "7", "caller_phone": "301"})
        request = mock_agent.handle_message.call_args.args[0]
        assert (request.agent_uid, request.caller_phone) == ("7", "301")

    def test_configuration_error_is_500_with_message(self, client, mock_agent):
        mock_agent.handle_message.side_effect = ConfigurationError("OpenAI API key is not configured.")
        response = client.post("/agent/message", json={"message": "hi"})
        assert response.status_code == 500
        assert response.json()["detail"] == "OpenAI API key is not configured."

    def test_llm_status_error_is_passed_through(self, client, mock_agent):
        mock_agent.handle_message.side_effect = UpstreamStatusError(
            "OpenAI API error: 429 Too Many Requests", status_code=429, body="slow down",
        )
        response = client.post("/agent/message", json={"message": "hi"})
        assert response.status_code == 429
        assert response.json()["detail"] == {
            "error": "OpenAI API error: 429 Too Many Requests",
            "body": "slow down",
        }

    def test_llm_transport_error_is_502(self, client, mock_agent):
        mock_agent.handle_message.side_effect = TransportError("ConnectTimeout: timed out")
        response = client.post("/agent/message", json={"message": "hi"})
        assert response.status_code == 502

    def test_unexpected_error_does_not_leak_details(self, client, mock_agent):
        mock_agent.handle_message.side_effect = RuntimeError("secret internals")
        response = client.post("/agent/message", json={"message": "hi"})
        assert response.status_code == 500
        assert "secret internals" not in response.text

    def test_message_too_long_is_rejected(self, client):
        response = client.post("/agent/message", json={"message": "x" * 5000})
        assert response.status_code == 422

    def test_agent_not_ready_is_503(self, client, mock_agent):
        app.state.agent = None
        response = client.post("/agent/message", json={"message": "hi"})
        assert response.status_code == 503


class TestDebugVouchersEndpoint:
    def test_returns_cached_accounts(self, client, mock_agent):
        mock_agent.cached_accounts.return_value = VoucherAccountsResponse(
            company="Silver Cab of PG",
            tenant="koach",
            count=1,
            accounts=[VoucherAccountModel(id="12", company="Acme Corp", abbreviation="ACME")],
        )
        response = client.get("/debug/vouchers-cached", params={"extension": "4100", "agentUid": "7"})
        assert response.status_code == 200
        assert response.json()["accounts"][0]["abbreviation"] == "ACME"
        mock_agent.cached_accounts.assert_awaited_once_with("4100", "7")

    def test_precondition_error_is_400(self, client, mock_agent):
        mock_agent.cached_accounts.side_effect = PreconditionError("Unknown/missing extension: '9'")
        response = client.get("/debug/vouchers-cached", params={"extension": "9"})
        assert response.status_code == 400
        assert "Unknown/missing extension" in response.json()["detail"]


class TestAdminEndpoints:
    def test_invalidate_tenant(self, client, mock_agent):
        response = client.post(
            "/admin/accounts-cache/invalidate", params={"tenant": "koach"}, headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json() == {"tenant": "koach", "invalidated": 1}
        mock_agent.accounts.invalidate.assert_called_once_with("koach")

    def test_invalidate_requires_tenant(self, client):
        response = client.post("/admin/accounts-cache/invalidate", headers=ADMIN)
        assert response.status_code == 422

    def test_invalidate_all(self, client):
        response = client.post("/admin/accounts-cache/invalidate-all", headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"tenant": None, "invalidated": 3}

    @pytest.mark.parametrize("headers", [{}, {"X-Admin-Token": "wrong"}])
    @pytest.mark.parametrize(
        "path", ["/admin/accounts-cache/invalidate", "/admin/accounts-cache/invalidate-all"],
    )
    def test_missing_or_wrong_token_is_401(self, client, mock_agent, path, headers):
        response = client.post(path, params={"tenant": "koach"}, headers=headers)
        assert response.status_code == 401
        mock_agent.accounts.invalidate.assert_not_called()
        mock_agent.accounts.invalidate_all.assert_not_called()

    def test_unconfigured_token_disables_admin_routes(self, client, mock_agent, monkeypatch):
        monkeypatch.setattr("calltaker.api.routes.CALLTAKER_ADMIN_TOKEN", "")
        response = client.post("/admin/accounts-cache/invalidate-all", headers=ADMIN)
        assert response.status_code == 403
        mock_agent.accounts.invalidate_all.assert_not_called()


class TestRootEndpoint:
    def test_root_returns_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/api/health"


class TestAppLifecycle:
    def _agent(self):
        agent = MagicMock()
        agent.aclose = AsyncMock()
        return agent

    def test_lifespan_builds_and_closes_agent(self):
        agent = self._agent()
        application = create_app(lambda: agent, config_dir=str(CONFIG_DIR))

        with patch("calltaker.server.metrics") as mock_metrics:
            with TestClient(application) as c:
                assert application.state.agent is agent
                root = c.get("/").json()
            assert application.state.agent is None

        assert root["directory_ok"] is True
        agent.aclose.assert_awaited_once()
        mock_metrics.close.assert_called_once()

    def test_broken_directory_is_reported_not_fatal(self, tmp_path):
        (tmp_path / "agents.json").write_text("{not json")
        application = create_app(self._agent, config_dir=str(tmp_path))

        with patch("calltaker.server.metrics"), TestClient(application) as c:
            assert c.get("/api/health").status_code == 200
            assert c.get("/").json()["directory_ok"] is False

    def test_response_time_header(self, client):
        response = client.get("/api/health")
        assert float(response.headers["X-Response-Time-Ms"]) >= 0
