"""Tests for the Agent facade."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from praxis.agent import Agent
from praxis.config import ModelConfig
from praxis.errors import EndpointUnavailable, ModelNotFound
from praxis.ollama import OllamaClient
from praxis.schemas import ObservationKind, SessionStatus, TurnRole


def _tags(*names):
    def handler(request):
        return httpx.Response(200, json={"models": [{"name": n} for n in names]})

    return handler


def _unreachable(request):
    raise httpx.ConnectError("refused", request=request)


class TestInitialize:
    """Test startup checks."""

    @pytest.fixture
    def models_config(self, config):
        return config.model_copy(
            update={"models": ModelConfig(orchestrator="qwen3-vl:8b", executor="qwen3:8b")}
        )

    @pytest.mark.asyncio
    async def test_ready(self, models_config):
        """Both role models present means the agent is ready."""
        client = OllamaClient(
            models_config.ollama, transport=httpx.MockTransport(_tags("qwen3-vl:8b", "qwen3:8b"))
        )
        agent = Agent(models_config, client=client)

        await agent.initialize()
        await agent.aclose()

    @pytest.mark.asyncio
    async def test_unreachable(self, models_config):
        """An unreachable endpoint fails startup."""
        client = OllamaClient(models_config.ollama, transport=httpx.MockTransport(_unreachable))
        agent = Agent(models_config, client=client)

        with pytest.raises(EndpointUnavailable, match="Is it running"):
            await agent.initialize()
        await agent.aclose()

    @pytest.mark.asyncio
    async def test_missing_model(self, models_config):
        """A role model that is not pulled fails startup."""
        client = OllamaClient(models_config.ollama, transport=httpx.MockTransport(_tags("qwen3:8b")))
        agent = Agent(models_config, client=client)

        with pytest.raises(ModelNotFound, match="qwen3-vl:8b"):
            await agent.initialize()
        await agent.aclose()


class TestRun:
    """Test running sessions through the facade."""

    @pytest_asyncio.fixture
    async def make_agent(self, config, registry):
        agents = []

        def _make_agent(router):
            agent = Agent(config, router=router, registry=registry)
            agents.append(agent)
            return agent

        yield _make_agent
        for agent in agents:
            await agent.aclose()

    @pytest.mark.asyncio
    async def test_run_to_completion(self, make_agent, make_router, make_decision, make_final):
        """A run returns the terminal result and leaves no live sessions."""
        router = make_router([make_decision(("echo", {"text": "hi"})), make_final("finished")])
        agent = make_agent(router)
        seen = []

        result = await agent.run("Say hi", on_turn=lambda session, turn: seen.append(turn.role))

        assert result.status == SessionStatus.COMPLETED
        assert result.output == "finished"
        assert seen[0] == TurnRole.USER
        assert len(agent.sessions) == 0

    @pytest.mark.asyncio
    async def test_run_with_overrides(self, make_agent, make_router, make_decision):
        """Per-run overrides change budgets without touching the agent config."""
        router = make_router([make_decision(("echo", {"text": "a"})), make_decision(("echo", {"text": "b"}))])
        agent = make_agent(router)

        result = await agent.run("goal", max_turns=1)

        assert result.status == SessionStatus.TURN_BUDGET_EXCEEDED
        assert result.max_turns == 1
        assert agent.config.agent.max_turns == 5

    @pytest.mark.asyncio
    async def test_run_with_delegation(self, make_agent, make_router, make_decision, make_final):
        """Delegation runs a child session on the shared router."""
        router = make_router(
            [
                make_decision(("delegate_task", {"goal": "sub work"})),
                make_final("sub result"),
                make_final("top result"),
            ]
        )
        agent = make_agent(router)

        result = await agent.run("top goal")

        assert result.status == SessionStatus.COMPLETED
        observation = [t for t in result.history if t.role == TurnRole.OBSERVATION][0]
        assert observation.kind == ObservationKind.SUCCESS
        assert "sub result" in observation.content
        assert len(agent.sessions) == 0

    @pytest.mark.asyncio
    async def test_cancel(self, make_agent, make_router):
        """cancel aborts a running session."""
        agent = make_agent(make_router(delay=5))
        task = asyncio.create_task(agent.run("slow goal"))
        await asyncio.sleep(0.05)

        assert agent.cancel("sess-unknown") == 0
        assert agent.cancel() == 1
        result = await asyncio.wait_for(task, timeout=2)

        assert result.status == SessionStatus.ABORTED

    @pytest.mark.asyncio
    async def test_catalog(self, make_agent, make_router):
        """catalog lists the registry's tools."""
        agent = make_agent(make_router())

        assert [info.name for info in agent.catalog()] == ["echo", "delegate_task"]


class _DelegatingRouter:
    """Parents delegate once then finish; children count how many run at once."""

    streaming = False

    def __init__(self, make_decision, make_final):
        self.make_decision = make_decision
        self.make_final = make_final
        self.in_flight = 0
        self.peak = 0

    async def orchestrate(self, history_context, tool_catalog):
        goal = history_context[1]["content"]
        if goal.startswith("child"):
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            await asyncio.sleep(0.05)
            self.in_flight -= 1
            return self.make_final(f"{goal} done")
        if any(m["content"].startswith("Observation") for m in history_context):
            return self.make_final(f"{goal} done")
        return self.make_decision(("delegate_task", {"goal": f"child of {goal}"}))

    async def generate(self, prompt, on_token=None, system=None):
        return "generated"


class TestSubAgentCeiling:
    """Test the sub-agent ceiling across concurrent runs."""

    @pytest.mark.asyncio
    async def test_ceiling_spans_sessions(self, config, registry, make_decision, make_final):
        """Concurrent top-level runs share one sub-agent ceiling."""
        config = config.model_copy(
            update={"agent": config.agent.model_copy(update={"max_concurrent_subagents": 1})}
        )
        router = _DelegatingRouter(make_decision, make_final)
        agent = Agent(config, router=router, registry=registry)

        try:
            first, second = await asyncio.wait_for(
                asyncio.gather(agent.run("top-A"), agent.run("top-B")), timeout=5
            )
        finally:
            await agent.aclose()

        assert first.status == SessionStatus.COMPLETED
        assert second.status == SessionStatus.COMPLETED
        assert router.peak == 1
        assert agent.subagent_slots.peak == 1
        assert agent.subagent_slots.active == 0
