"""ReAct loop controller: drives one session from goal to terminal status."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from praxis.config import AgentConfig
from praxis.engine import ExecutionEngine
from praxis.errors import (
    CallTimeout,
    EndpointUnavailable,
    InternalInvariantViolation,
    MalformedModelOutput,
    SessionCancelled,
)
from praxis.history import PendingTurn
from praxis.prompts import (
    build_subagent_prompt,
    build_synthesis_prompt,
    build_system_prompt,
    format_action,
    render_messages,
)
from praxis.router import DualModelRouter
from praxis.schemas import (
    Action,
    ErrorDetail,
    Observation,
    ObservationKind,
    OrchestratorDecision,
    SessionResult,
    SessionStatus,
    Turn,
    TurnRole,
)
from praxis.session import LoopState, Session
from praxis.tools.delegate import DELEGATE_TOOL_NAME
from praxis.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

TurnCallback = Callable[[Session, Turn], None]


class LoopController:
    """Thought, Action, Observation cycles for one session.

    The controller is the only writer of the session and its history.
    Cancellation is cooperative: ``cancel()`` (or the shared cancel event)
    aborts the session at the next suspension point and tears down any
    in-flight batch.
    """

    def __init__(
        self,
        session: Session,
        router: DualModelRouter,
        registry: ToolRegistry,
        engine: ExecutionEngine,
        config: AgentConfig,
        cancel_event: asyncio.Event | None = None,
        on_turn: TurnCallback | None = None,
        on_token: Callable[[str], None] | None = None,
    ):
        self.session = session
        self.router = router
        self.registry = registry
        self.engine = engine
        self.config = config
        self.cancel_event = cancel_event or asyncio.Event()
        self.on_turn = on_turn
        self.on_token = on_token

        can_delegate = session.depth < session.max_depth and session.allows(DELEGATE_TOOL_NAME)
        if session.depth > 0:
            extra = build_subagent_prompt(session.id, session.depth)
        else:
            extra = self.config.system_prompt
        self.system_prompt = build_system_prompt(
            browser_enabled="browser_url" in registry and session.allows("browser_url"),
            delegation_enabled=can_delegate,
            extra=extra,
        )
        self.catalog = registry.catalog(
            include_delegation=can_delegate, allowed=session.allowed_tools
        )

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        self.cancel_event.set()

    async def run(self) -> SessionResult:
        """Run the session to a terminal status and report it."""
        session = self.session
        if len(session.history) == 0:
            self._commit([PendingTurn(TurnRole.USER, session.goal)])
        logger.info(
            f"Session {session.id} started (depth {session.depth}, max_turns {session.max_turns})"
        )

        try:
            while not session.is_terminal:
                await self._step()
        except asyncio.CancelledError:
            if not session.is_terminal:
                session.finish(
                    SessionStatus.ABORTED,
                    error=ErrorDetail(code="cancelled", message="Session task was cancelled"),
                )
            raise
        except InternalInvariantViolation as e:
            logger.error(f"Session {session.id} hit an internal invariant violation: {e}")
            session.status = SessionStatus.ERROR
            session.state = LoopState.TERMINAL
            session.error = ErrorDetail(code=e.code, message=str(e))
            raise

        return session.to_result()

    def _emit(self, turns: list[Turn]) -> None:
        if self.on_turn is None:
            return
        for turn in turns:
            self.on_turn(self.session, turn)

    def _commit(self, pending: list[PendingTurn]) -> list[Turn]:
        turns = self.session.history.extend(pending)
        if len(self.session.history) > self.session.history.max_history:
            raise InternalInvariantViolation("History grew past max_history")
        self._emit(turns)
        return turns

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await a model call, abandoning it if the session is cancelled first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        await asyncio.wait({task}, timeout=self.config.cancel_grace_seconds)
        raise SessionCancelled("Session cancelled")

    def _abort(self) -> None:
        self.session.finish(
            SessionStatus.ABORTED,
            error=ErrorDetail(code="cancelled", message="Session cancelled"),
        )

    async def _step(self) -> None:
        session = self.session
        session.state = LoopState.AWAITING_THOUGHT

        if self.cancel_event.is_set():
            self._abort()
            return
        if session.turn_count >= session.max_turns:
            await self._exhausted()
            return

        messages = render_messages(
            session.goal,
            session.history.window(self.config.context_window),
            self.system_prompt,
        )
        try:
            decision = await self._until_cancelled(self.router.orchestrate(messages, self.catalog))
        except SessionCancelled:
            self._abort()
            return
        except MalformedModelOutput as e:
            self._record_malformed(e)
            return
        except (EndpointUnavailable, CallTimeout) as e:
            logger.error(f"Session {session.id} cannot reach the orchestrator: {e}")
            session.finish(SessionStatus.ERROR, error=ErrorDetail(code=e.code, message=str(e)))
            return

        if decision.is_final:
            self._commit([PendingTurn(TurnRole.THOUGHT, decision.thought or decision.final_answer)])
            session.finish(SessionStatus.COMPLETED, output=decision.final_answer)
            return

        await self._act(decision)

    def _record_malformed(self, error: MalformedModelOutput) -> None:
        session = self.session
        logger.warning(f"Session {session.id} got malformed orchestrator output: {error}")
        self._commit(
            [
                PendingTurn(TurnRole.THOUGHT, error.raw or "(unparseable orchestrator output)"),
                PendingTurn(
                    TurnRole.OBSERVATION,
                    f"Malformed output: {error}",
                    kind=ObservationKind.INVALID_ACTION,
                ),
            ]
        )
        self._advance()

    async def _act(self, decision: OrchestratorDecision) -> None:
        session = self.session
        session.state = LoopState.AWAITING_ACTION
        logger.info(
            f"Session {session.id} turn {session.turn_count + 1}: "
            f"{', '.join(a.tool_name for a in decision.actions)}"
        )

        session.state = LoopState.AWAITING_OBSERVATION
        observations = await self.engine.run_batch(
            session, decision.actions, self.cancel_event, self.on_token
        )
        self._check_correlation(decision.actions, observations)

        pending = [PendingTurn(TurnRole.THOUGHT, decision.thought or "(no thought)")]
        pending.extend(
            PendingTurn(TurnRole.ACTION, format_action(a.tool_name, a.arguments), ref=a.id)
            for a in decision.actions
        )
        pending.extend(
            PendingTurn(TurnRole.OBSERVATION, o.payload, ref=o.action_id, kind=o.kind)
            for o in observations
        )
        self._commit(pending)
        self._advance()

    def _advance(self) -> None:
        session = self.session
        session.turn_count += 1
        if session.turn_count > session.max_turns:
            raise InternalInvariantViolation(
                f"turn_count {session.turn_count} exceeds max_turns {session.max_turns}"
            )

    @staticmethod
    def _check_correlation(actions: list[Action], observations: list[Observation]) -> None:
        if [a.id for a in actions] != [o.action_id for o in observations]:
            raise InternalInvariantViolation("Observations do not correlate 1:1 with actions")

    async def _exhausted(self) -> None:
        session = self.session
        error = ErrorDetail(
            code="turn_budget_exceeded",
            message=f"Reached max_turns ({session.max_turns}) without a final answer",
        )
        observations = [t for t in session.history.turns() if t.role == TurnRole.OBSERVATION]

        output = None
        if self.config.synthesize_on_exhaustion and observations:
            prompt = build_synthesis_prompt(session.goal, observations)
            try:
                output = await self._until_cancelled(self.router.generate(prompt))
            except SessionCancelled:
                self._abort()
                return
            except (EndpointUnavailable, CallTimeout) as e:
                logger.warning(f"Could not synthesize an answer for {session.id}: {e}")

        session.finish(SessionStatus.TURN_BUDGET_EXCEEDED, output=output, error=error)
