"""Pytest configuration and fixtures for Praxis tests."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

import pytest

from praxis.config import AgentConfig, BrowserConfig, Config, StreamingConfig
from praxis.engine import ExecutionEngine
from praxis.loop import LoopController
from praxis.schemas import Action, ModelRole, OrchestratorDecision, ToolCategory
from praxis.session import Session, SessionTable
from praxis.spawner import SubAgentSpawner
from praxis.tools.registry import ToolDescriptor, ToolRegistry


def _make_decision(*calls: tuple[str, dict[str, Any]], thought: str = "thinking") -> OrchestratorDecision:
    batch_id = uuid.uuid4().hex[:8]
    actions = [
        Action(id=f"{batch_id}-{i}", tool_name=name, arguments=arguments, batch_id=batch_id)
        for i, (name, arguments) in enumerate(calls)
    ]
    return OrchestratorDecision(thought=thought, actions=actions)


def _make_final(answer: str, thought: str = "") -> OrchestratorDecision:
    return OrchestratorDecision(thought=thought, final_answer=answer)


class ScriptedRouter:
    """Router stand-in that replays scripted orchestrator decisions.

    Script entries are decisions or exceptions to raise. An empty script
    answers with a final answer of "done".
    """

    def __init__(self, script=(), executor_reply: str = "generated", delay: float = 0.0):
        self.script = list(script)
        self.executor_reply = executor_reply
        self.delay = delay
        self.streaming = False
        self.calls = {role: 0 for role in ModelRole}
        self.orchestrator_messages: list[list[dict[str, Any]]] = []
        self.catalogs: list[list[dict[str, Any]]] = []
        self.prompts: list[str] = []

    async def orchestrate(self, history_context, tool_catalog):
        self.calls[ModelRole.ORCHESTRATOR] += 1
        self.orchestrator_messages.append(history_context)
        self.catalogs.append(tool_catalog)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.script:
            return _make_final("done")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    async def generate(self, prompt, on_token=None, system=None):
        self.calls[ModelRole.EXECUTOR] += 1
        self.prompts.append(prompt)
        if on_token is not None:
            on_token(self.executor_reply)
        return self.executor_reply


class Stack:
    """Session table, spawner, engine and loop wired the way the Agent does it."""

    def __init__(self, router, registry: ToolRegistry, config: AgentConfig):
        self.router = router
        self.registry = registry
        self.config = config
        self.table = SessionTable()
        self.spawner = SubAgentSpawner(config, self.table)
        self.engine = ExecutionEngine(registry, router, config, self.spawner)
        self.spawner.runner = self.run_child
        self.turns = []

    def new_session(self, goal: str = "Solve the task", **kwargs) -> Session:
        params = {
            "max_turns": self.config.max_turns,
            "max_history": self.config.max_history,
            "max_depth": self.config.max_depth,
        }
        params.update(kwargs)
        return self.table.register(Session(goal=goal, **params))

    def controller(self, session: Session, cancel_event: asyncio.Event | None = None) -> LoopController:
        return LoopController(
            session,
            self.router,
            self.registry,
            self.engine,
            self.config,
            cancel_event=cancel_event,
            on_turn=lambda s, turn: self.turns.append((s.id, turn)),
        )

    async def run_child(self, child: Session, cancel_event: asyncio.Event | None):
        return await self.controller(child, cancel_event).run()


@pytest.fixture
def make_decision():
    """Build an OrchestratorDecision from (tool_name, arguments) pairs."""
    return _make_decision


@pytest.fixture
def make_final():
    """Build a final-answer decision."""
    return _make_final


@pytest.fixture
def agent_config() -> AgentConfig:
    """Agent budgets tuned for fast tests."""
    return AgentConfig(
        max_turns=5,
        max_history=100,
        context_window=20,
        max_depth=2,
        cancel_grace_seconds=0.1,
        synthesize_on_exhaustion=False,
        debug=False,
    )


@pytest.fixture
def config(agent_config: AgentConfig) -> Config:
    """Full config with browser and streaming disabled."""
    return Config(
        agent=agent_config,
        browser=BrowserConfig(enabled=False),
        streaming=StreamingConfig(enabled=False),
    )


@pytest.fixture
def make_tool():
    """Build a test tool descriptor with its category's policy defaults."""

    def _make_tool(
        name: str,
        invoke,
        category: ToolCategory = ToolCategory.CODING,
        schema: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> ToolDescriptor:
        return ToolDescriptor.from_policy(
            name=name,
            description=f"{name} test tool",
            input_schema=schema or {"type": "object", "properties": {}},
            invoke=invoke,
            category=category,
            **overrides,
        )

    return _make_tool


@pytest.fixture
def echo_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {"text": {"type": "string", "description": "Text to echo"}},
        "required": ["text"],
    }


@pytest.fixture
def registry(make_tool, echo_schema) -> ToolRegistry:
    """Registry with an echo tool and the delegation marker."""
    from praxis.tools.delegate import delegation_tools

    async def echo(arguments, context):
        return f"echo:{arguments['text']}"

    registry = ToolRegistry()
    registry.register(make_tool("echo", echo, schema=echo_schema))
    for descriptor in delegation_tools():
        registry.register(descriptor)
    return registry


@pytest.fixture
def make_stack(agent_config: AgentConfig):
    """Factory for a wired Stack."""

    def _make_stack(router, registry: ToolRegistry, config: AgentConfig | None = None) -> Stack:
        return Stack(router, registry, config or agent_config)

    return _make_stack


@pytest.fixture(autouse=True)
def isolated_config_path(tmp_path, monkeypatch):
    """Keep tests away from the user's real config file."""
    monkeypatch.setattr("praxis.config.DEFAULT_CONFIG_PATH", tmp_path / "missing" / "config.toml")


@pytest.fixture
def make_router():
    """Factory for a ScriptedRouter."""
    return ScriptedRouter
