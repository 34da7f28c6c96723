"""Sub-agent spawner: creates, bounds and runs nested sessions."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from praxis.config import AgentConfig
from praxis.errors import DepthBudgetExceeded, InternalInvariantViolation
from praxis.prompts import build_subagent_goal, truncate_to_chars
from praxis.schemas import ErrorDetail, ObservationKind, SessionResult, SessionStatus
from praxis.session import Session, SessionTable

logger = logging.getLogger(__name__)

SessionRunner = Callable[[Session, asyncio.Event | None], Awaitable[SessionResult]]


@dataclass
class SubAgentTask:
    """A nested session created for one delegated sub-goal."""

    parent_session_id: str
    delegated_goal: str
    context_slice: str
    depth: int
    session: Session
    allowed_tools: frozenset[str] = frozenset()


class SlotPool:
    """Global cap on sub-agents running at once.

    One pool is shared by every spawner of an Agent so the ceiling holds
    across concurrent top-level sessions.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.active = 0
        self.peak = 0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self.active += 1
        self.peak = max(self.peak, self.active)

    def release(self) -> None:
        self.active -= 1
        self._semaphore.release()


class SubAgentSpawner:
    """Creates nested sessions and caps how many run at once.

    The global ceiling counts sessions that are actively running. A sub-agent
    that is itself waiting on delegated children lends its slot back for the
    duration of that batch, so nesting never deadlocks the ceiling.
    """

    def __init__(
        self,
        config: AgentConfig,
        table: SessionTable,
        runner: SessionRunner | None = None,
        slots: SlotPool | None = None,
    ):
        self.config = config
        self.table = table
        self.runner = runner
        self.slots = slots or SlotPool(config.max_concurrent_subagents)
        self._names = itertools.count(1)
        self.spawned = 0

    @property
    def active(self) -> int:
        return self.slots.active

    @property
    def peak(self) -> int:
        return self.slots.peak

    def build_context_slice(self, parent: Session, explicit: str | None = None) -> str:
        """Bounded context for a child: explicit text plus the parent's latest turns."""
        parts = []
        if explicit:
            parts.append(explicit.strip())
        recent = parent.history.window(self.config.delegation_context_turns)
        if recent:
            parts.append("Recent parent turns:")
            parts.extend(f"[{turn.role.value}] {turn.content}" for turn in recent)
        return truncate_to_chars("\n".join(parts), self.config.delegation_context_chars)

    def spawn(
        self,
        parent: Session,
        delegated_goal: str,
        context_slice: str,
        requested_turns: int | None = None,
        allowed_tools: frozenset[str] | None = None,
    ) -> SubAgentTask:
        """Create and register a child session.

        Raises:
            DepthBudgetExceeded: when the child would exceed max_depth; no
                session is created and no model is called
        """
        depth = parent.depth + 1
        if depth > parent.max_depth:
            logger.warning(
                f"Session {parent.id} tried to delegate at depth {parent.depth} "
                f"(max_depth {parent.max_depth})"
            )
            raise DepthBudgetExceeded(depth, parent.max_depth)

        budget = min(self.table.remaining_budget(parent.id), self.config.delegation_max_turns)
        if requested_turns is not None and requested_turns > 0:
            budget = min(budget, requested_turns)
        if budget <= 0:
            raise InternalInvariantViolation(
                f"Session {parent.id} delegated with no remaining turn budget"
            )

        session = Session(
            goal=build_subagent_goal(delegated_goal, context_slice),
            max_turns=budget,
            max_history=parent.history.max_history,
            max_depth=parent.max_depth,
            depth=depth,
            parent_id=parent.id,
            id=f"{parent.id}.sub{next(self._names)}",
            allowed_tools=allowed_tools or parent.allowed_tools,
        )
        self.table.register(session)
        self.spawned += 1
        logger.info(
            f"Spawned {session.id} at depth {depth} with {budget} turns: {delegated_goal[:80]}"
        )
        return SubAgentTask(
            parent_session_id=parent.id,
            delegated_goal=delegated_goal,
            context_slice=context_slice,
            depth=depth,
            session=session,
            allowed_tools=session.allowed_tools,
        )

    async def _acquire(self, session: Session) -> None:
        await self.slots.acquire()
        session.holds_slot = True

    def _release(self, session: Session) -> None:
        if not session.holds_slot:
            return
        session.holds_slot = False
        self.slots.release()

    @asynccontextmanager
    async def slot(self, session: Session) -> AsyncIterator[None]:
        """Hold one of the global sub-agent slots while the child runs."""
        await self._acquire(session)
        try:
            yield
        finally:
            self._release(session)

    @asynccontextmanager
    async def yield_slot(self, session: Session) -> AsyncIterator[None]:
        """Lend a held slot back while waiting on delegated children."""
        if not session.holds_slot:
            yield
            return
        self._release(session)
        yield
        await self._acquire(session)

    def condense(self, result: SessionResult) -> tuple[ObservationKind, str]:
        """Reduce a child's terminal result to one observation payload."""
        if result.status == SessionStatus.COMPLETED:
            kind = ObservationKind.SUCCESS
        elif result.status == SessionStatus.ABORTED:
            kind = ObservationKind.CANCELLED
        else:
            kind = ObservationKind.TOOL_ERROR

        header = (
            f"Sub-agent {result.session_id} {result.status.value} "
            f"after {result.turn_count}/{result.max_turns} turns"
        )
        if result.error:
            header += f" ({result.error.code}: {result.error.message})"
        output = truncate_to_chars(result.output or "", self.config.observation_max_chars)
        if not output:
            return kind, header
        return kind, f"{header}:\n{output}"

    def refused(self, parent: Session, error: DepthBudgetExceeded) -> SessionResult:
        """Terminal result for a child that was never started."""
        return SessionResult(
            session_id=f"{parent.id}.sub-refused",
            parent_id=parent.id,
            status=SessionStatus.DEPTH_BUDGET_EXCEEDED,
            turn_count=0,
            max_turns=0,
            depth=error.depth,
            error=ErrorDetail(code=error.code, message=str(error)),
        )

    async def delegate(
        self,
        parent: Session,
        arguments: dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[ObservationKind, str]:
        """Spawn a child for a delegation action, run it and condense the outcome."""
        if self.runner is None:
            raise InternalInvariantViolation("Spawner has no session runner bound")

        context_slice = self.build_context_slice(parent, arguments.get("context"))
        try:
            task = self.spawn(
                parent,
                arguments["goal"],
                context_slice,
                arguments.get("max_turns"),
                frozenset(arguments.get("tools") or ()),
            )
        except DepthBudgetExceeded as e:
            return self.condense(self.refused(parent, e))

        try:
            async with self.slot(task.session):
                result = await self.runner(task.session, cancel_event)
        finally:
            self.table.discard(task.session.id)
        return self.condense(result)
