"""Agent facade: wires config, client, router, tools, spawner, engine and loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from praxis.config import Config
from praxis.engine import ExecutionEngine
from praxis.errors import EndpointUnavailable, ModelNotFound
from praxis.loop import LoopController, TurnCallback
from praxis.ollama import OllamaClient
from praxis.router import DualModelRouter
from praxis.schemas import SessionResult, ToolCategory, ToolInfo
from praxis.session import Session, SessionTable
from praxis.spawner import SlotPool, SubAgentSpawner
from praxis.tools import BrowserTools, ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)


class Agent:
    """Entry point for front ends.

    One Agent may run several top-level sessions concurrently; the client,
    registry, browser lock and sub-agent slots are shared, everything else
    is per run.
    """

    def __init__(
        self,
        config: Config | None = None,
        client: OllamaClient | None = None,
        router: DualModelRouter | None = None,
        registry: ToolRegistry | None = None,
    ):
        self.config = config or Config.load()
        self.client = client or OllamaClient(self.config.ollama)
        self.router = router or DualModelRouter(
            self.client,
            self.config.models,
            self.config.router,
            streaming=self.config.streaming.enabled,
        )
        self.browser = BrowserTools(self.config.browser)
        self.registry = registry or build_default_registry(self.config, self.browser)
        self.sessions = SessionTable()
        self._category_locks: dict[ToolCategory, asyncio.Lock] = {}
        self.subagent_slots = SlotPool(self.config.agent.max_concurrent_subagents)
        self._active: dict[str, LoopController] = {}

    async def initialize(self) -> None:
        """Verify the endpoint and both role models are available.

        Raises:
            EndpointUnavailable: if Ollama cannot be reached
            ModelNotFound: if a role model has not been pulled
        """
        if not await self.client.health():
            raise EndpointUnavailable(
                f"Cannot connect to Ollama at {self.client.base_url}. Is it running?"
            )
        for model in {self.config.models.orchestrator, self.config.models.executor}:
            if not await self.client.is_model_available(model):
                raise ModelNotFound(model)

        if self.config.browser.enabled and not self.browser.is_available():
            logger.warning(
                f"{self.config.browser.executable} not found; browser tools will report errors"
            )
        logger.info(
            f"Agent ready: orchestrator={self.config.models.orchestrator} "
            f"executor={self.config.models.executor} tools={len(self.registry)}"
        )

    async def run(
        self,
        goal: str,
        on_turn: TurnCallback | None = None,
        on_token: Callable[[str], None] | None = None,
        **overrides: Any,
    ) -> SessionResult:
        """Run one top-level session to its terminal status.

        ``overrides`` accepts the same keys as ``Config.with_overrides``.
        """
        config = self.config.with_overrides(**overrides) if overrides else self.config
        router = self.router
        if config.models != self.config.models or config.streaming != self.config.streaming:
            router = DualModelRouter(
                self.client, config.models, config.router, streaming=config.streaming.enabled
            )
        registry = self.registry
        if config.browser != self.config.browser:
            registry = build_default_registry(config, BrowserTools(config.browser))

        session = self.sessions.register(
            Session(
                goal=goal,
                max_turns=config.agent.max_turns,
                max_history=config.agent.max_history,
                max_depth=config.agent.max_depth,
            )
        )
        cancel_event = asyncio.Event()
        spawner = SubAgentSpawner(config.agent, self.sessions, slots=self.subagent_slots)
        engine = ExecutionEngine(registry, router, config.agent, spawner, self._category_locks)

        async def run_child(child: Session, child_cancel: asyncio.Event | None) -> SessionResult:
            controller = LoopController(
                child,
                router,
                registry,
                engine,
                config.agent,
                cancel_event=child_cancel,
                on_turn=on_turn,
                on_token=on_token,
            )
            return await controller.run()

        spawner.runner = run_child
        controller = LoopController(
            session,
            router,
            registry,
            engine,
            config.agent,
            cancel_event=cancel_event,
            on_turn=on_turn,
            on_token=on_token,
        )

        self._active[session.id] = controller
        try:
            return await controller.run()
        finally:
            self._active.pop(session.id, None)
            self.sessions.discard(session.id)

    def cancel(self, session_id: str | None = None) -> int:
        """Request cancellation of one running session, or all of them."""
        targets = [
            controller
            for sid, controller in self._active.items()
            if session_id is None or sid == session_id
        ]
        for controller in targets:
            controller.cancel()
        return len(targets)

    def catalog(self) -> list[ToolInfo]:
        return self.registry.tool_infos()

    async def list_models(self) -> list[str]:
        return await self.client.list_models()

    async def aclose(self) -> None:
        await self.client.aclose()
