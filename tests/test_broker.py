"""Tests for HTTP broker contract compliance."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from praxis.broker import app
from praxis.config import Config
from praxis.errors import ConfigError
from praxis.schemas import SessionResult, SessionStatus, ToolCategory, ToolInfo


def _mock_agent() -> MagicMock:
    agent = MagicMock()
    agent.config = Config()
    agent.run = AsyncMock(
        return_value=SessionResult(
            session_id="sess-001",
            status=SessionStatus.COMPLETED,
            output="done",
            turn_count=1,
            max_turns=10,
        )
    )
    agent.cancel.return_value = 1
    agent.catalog.return_value = [
        ToolInfo(
            name="write_code",
            description="Write code",
            category=ToolCategory.CODING,
            fail_fast=False,
            concurrency_safe=True,
        )
    ]
    agent.client.health = AsyncMock(return_value=True)
    return agent


class TestBrokerContract:
    """Test HTTP broker enforces request/response contracts."""

    @pytest.fixture
    def client(self):
        return TestClient(app)

    @patch("praxis.broker.get_agent")
    def test_run(self, mock_get_agent, client):
        """Verify /run returns a session result."""
        agent = _mock_agent()
        mock_get_agent.return_value = agent

        response = client.post("/run", json={"goal": "write a parser", "max_turns": 4})

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == "sess-001"
        assert data["status"] == "completed"
        assert data["output"] == "done"
        assert agent.run.call_args.args[0] == "write a parser"
        assert agent.run.call_args.kwargs["max_turns"] == 4

    def test_run_missing_goal(self, client):
        """Verify /run rejects a request without a goal."""
        response = client.post("/run", json={"max_turns": 4})

        assert response.status_code == 422

    def test_run_empty_goal(self, client):
        """Verify /run rejects an empty goal."""
        response = client.post("/run", json={"goal": ""})

        assert response.status_code == 422

    def test_run_turns_out_of_range(self, client):
        """Verify /run bounds max_turns."""
        response = client.post("/run", json={"goal": "x", "max_turns": 0})

        assert response.status_code == 422

    @patch("praxis.broker.get_agent")
    def test_run_config_error(self, mock_get_agent, client):
        """Invalid overrides are a 400."""
        agent = _mock_agent()
        agent.run.side_effect = ConfigError("Invalid override: max_history")
        mock_get_agent.return_value = agent

        response = client.post("/run", json={"goal": "x", "max_history": 1})

        assert response.status_code == 400
        assert "Invalid override" in response.json()["detail"]

    @patch("praxis.broker.get_agent")
    def test_cancel(self, mock_get_agent, client):
        """Verify /cancel reports how many sessions were cancelled."""
        agent = _mock_agent()
        mock_get_agent.return_value = agent

        response = client.post("/cancel", params={"session_id": "sess-001"})

        assert response.status_code == 200
        assert response.json() == {"cancelled": 1}
        agent.cancel.assert_called_once_with("sess-001")

    @patch("praxis.broker.get_agent")
    def test_tools(self, mock_get_agent, client):
        """Verify /tools lists the catalog."""
        mock_get_agent.return_value = _mock_agent()

        response = client.get("/tools")

        assert response.status_code == 200
        assert response.json()[0]["name"] == "write_code"
        assert response.json()[0]["category"] == "coding"


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.fixture
    def client(self):
        return TestClient(app)

    @patch("praxis.broker.get_agent")
    def test_health_returns_status(self, mock_get_agent, client):
        """Verify health endpoint returns status."""
        agent = _mock_agent()
        mock_get_agent.return_value = agent

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["broker"] == "healthy"
        assert data["ollama"] == "healthy"
        assert data["orchestrator_model"] == agent.config.models.orchestrator
        assert data["last_ollama_check"] is not None

    @patch("praxis.broker.get_agent")
    def test_health_ollama_down(self, mock_get_agent, client):
        """Verify health reports an unreachable Ollama."""
        agent = _mock_agent()
        agent.client.health = AsyncMock(return_value=False)
        mock_get_agent.return_value = agent

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["ollama"] == "unhealthy"


class TestErrorHandling:
    """Test broker error handling."""

    @patch("praxis.broker.get_agent")
    def test_unhandled_error_returns_error_response(self, mock_get_agent):
        """Unexpected failures become a 500 ErrorResponse."""
        agent = _mock_agent()
        agent.run.side_effect = RuntimeError("boom")
        mock_get_agent.return_value = agent

        client = TestClient(app, raise_server_exceptions=False)
        response = client.post("/run", json={"goal": "x"})

        assert response.status_code == 500
        assert response.json() == {"detail": "boom", "error_code": "INTERNAL_ERROR"}
