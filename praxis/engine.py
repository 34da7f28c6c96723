"""Parallel execution engine for one turn's action batch."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from praxis.config import AgentConfig
from praxis.errors import InternalInvariantViolation, InvalidAction, PraxisError
from praxis.prompts import truncate_to_chars
from praxis.schemas import Action, Observation, ObservationKind, ToolCategory
from praxis.session import Session
from praxis.spawner import SubAgentSpawner
from praxis.tools.registry import ToolContext, ToolDescriptor, ToolRegistry

if TYPE_CHECKING:
    from praxis.router import DualModelRouter

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """Runs every action of a batch concurrently and buffers one observation each.

    The engine never writes history; the loop controller commits the
    returned observations in proposal order.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        router: DualModelRouter,
        config: AgentConfig,
        spawner: SubAgentSpawner | None = None,
        category_locks: dict[ToolCategory, asyncio.Lock] | None = None,
    ):
        self.registry = registry
        self.router = router
        self.config = config
        self.spawner = spawner
        self._locks = category_locks if category_locks is not None else {}
        self._background: set[asyncio.Task] = set()

    def _lock_for(self, category: ToolCategory) -> asyncio.Lock:
        if category not in self._locks:
            self._locks[category] = asyncio.Lock()
        return self._locks[category]

    @property
    def background_tasks(self) -> int:
        return len(self._background)

    def _abandon(self, task: asyncio.Task) -> None:
        """Let a task that ignored cancellation finish on its own; its result is discarded."""
        if task.done():
            return
        logger.warning(f"Task {task.get_name()} ignored cancellation, leaving it in the background")
        self._background.add(task)
        task.add_done_callback(self._discard_background)

    def _discard_background(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned task {task.get_name()} failed: {task.exception()}")

    def _observation(
        self,
        action: Action,
        kind: ObservationKind,
        payload: str,
        duration: float = 0.0,
    ) -> Observation:
        return Observation(
            action_id=action.id,
            tool_name=action.tool_name,
            kind=kind,
            payload=truncate_to_chars(payload, self.config.observation_max_chars),
            duration=max(duration, 0.0),
        )

    def _prepare(self, session: Session, action: Action) -> tuple[ToolDescriptor, dict[str, Any]]:
        """Resolve and validate one action.

        Raises:
            InvalidAction: for unknown tools, tools outside the session's
                allowlist, or arguments that break the schema
        """
        descriptor = self.registry.resolve(action.tool_name)
        if descriptor is None:
            available = ", ".join(self.registry.names())
            raise InvalidAction(f"Unknown tool: {action.tool_name}. Available tools: {available}")
        if not session.allows(descriptor.name):
            allowed = ", ".join(sorted(session.allowed_tools))
            raise InvalidAction(
                f"Tool {descriptor.name} is not allowed in session {session.id}. "
                f"Allowed tools: {allowed}"
            )
        arguments = self.registry.validate(descriptor, action.arguments)
        if descriptor.delegation:
            self._check_delegated_tools(session, arguments.get("tools") or [])
        return descriptor, arguments

    def _check_delegated_tools(self, session: Session, names: list[str]) -> None:
        unknown = [name for name in names if self.registry.resolve(name) is None]
        if unknown:
            raise InvalidAction(f"Cannot delegate unknown tools: {', '.join(unknown)}")
        denied = [name for name in names if not session.allows(name)]
        if denied:
            raise InvalidAction(f"Cannot delegate tools this session may not use: {', '.join(denied)}")

    async def _invoke_tool(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> str:
        """Invoke a tool in its own task, bounded by the descriptor timeout.

        The tool runs in an inner task so a tool that ignores cancellation
        cannot hold the batch past the grace period.
        """
        lock = None if descriptor.concurrency_safe else self._lock_for(descriptor.category)
        if lock is not None:
            await lock.acquire()

        inner = asyncio.create_task(
            descriptor.invoke(arguments, context), name=f"tool:{descriptor.name}"
        )
        if lock is not None:
            inner.add_done_callback(lambda _: lock.release())

        try:
            done, _ = await asyncio.wait({inner}, timeout=descriptor.timeout_seconds)
        except asyncio.CancelledError:
            inner.cancel()
            await asyncio.wait({inner}, timeout=self.config.cancel_grace_seconds)
            self._abandon(inner)
            raise

        if not done:
            inner.cancel()
            await asyncio.wait({inner}, timeout=self.config.cancel_grace_seconds)
            self._abandon(inner)
            raise TimeoutError(f"{descriptor.name} timed out after {descriptor.timeout_seconds}s")
        return inner.result()

    async def _run_member(
        self,
        session: Session,
        action: Action,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        context: ToolContext,
        cancel_event: asyncio.Event | None,
    ) -> Observation:
        started = time.monotonic()
        try:
            if descriptor.delegation:
                if self.spawner is None:
                    raise InternalInvariantViolation("Delegation action without a spawner")
                kind, payload = await self.spawner.delegate(session, arguments, cancel_event)
            else:
                payload = await self._invoke_tool(descriptor, arguments, context)
                kind = ObservationKind.SUCCESS
        except InternalInvariantViolation:
            raise
        except PraxisError as e:
            logger.warning(f"{action.tool_name} failed: {e.code}: {e}")
            kind, payload = ObservationKind.TOOL_ERROR, f"{e.code}: {e}"
        except TimeoutError as e:
            logger.warning(str(e))
            kind, payload = ObservationKind.TOOL_ERROR, f"timeout: {e}"
        except Exception as e:
            logger.error(f"{action.tool_name} raised {type(e).__name__}: {e}")
            kind, payload = ObservationKind.TOOL_ERROR, f"{type(e).__name__}: {e}"

        return self._observation(action, kind, str(payload), time.monotonic() - started)

    async def _drain(self, tasks: set[asyncio.Task]) -> None:
        """Cancel member tasks and wait up to the grace period for them."""
        for task in tasks:
            task.cancel()
        if not tasks:
            return
        _, still_running = await asyncio.wait(tasks, timeout=self.config.cancel_grace_seconds)
        for task in still_running:
            self._abandon(task)

    async def run_batch(
        self,
        session: Session,
        actions: list[Action],
        cancel_event: asyncio.Event | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> list[Observation]:
        """Dispatch a batch and return one observation per action, in proposal order.

        A failing fail_fast member cancels its still-running siblings; a set
        ``cancel_event`` cancels everything still in flight. Cancelled members
        are recorded as such, never dropped.
        """
        results: list[Observation | None] = [None] * len(actions)
        context = ToolContext(
            router=self.router,
            session_id=session.id,
            depth=session.depth,
            goal=session.goal,
            history=session.history.turns(),
            on_token=on_token,
        )

        pending: dict[asyncio.Task, int] = {}
        descriptors: dict[int, ToolDescriptor] = {}
        for index, action in enumerate(actions):
            try:
                descriptor, arguments = self._prepare(session, action)
            except InvalidAction as e:
                logger.info(f"Invalid action {action.id}: {e}")
                results[index] = self._observation(action, ObservationKind.INVALID_ACTION, str(e))
                continue
            descriptors[index] = descriptor
            task = asyncio.create_task(
                self._run_member(session, action, descriptor, arguments, context, cancel_event),
                name=f"{action.id}:{action.tool_name}",
            )
            pending[task] = index

        has_delegation = any(d.delegation for d in descriptors.values())
        lend = self.spawner.yield_slot(session) if has_delegation and self.spawner else None

        logger.debug(
            f"Session {session.id} dispatching {len(pending)}/{len(actions)} actions "
            f"(batch {actions[0].batch_id if actions else '-'})"
        )

        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None
        abort_reason: str | None = None
        try:
            async with lend or contextlib.nullcontext():
                while pending and abort_reason is None:
                    waiting = set(pending)
                    if cancel_waiter is not None:
                        waiting.add(cancel_waiter)
                    done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                    for task in sorted(done & set(pending), key=pending.get):
                        index = pending.pop(task)
                        if task.cancelled():
                            results[index] = self._observation(
                                actions[index], ObservationKind.CANCELLED, "Cancelled: tool was cancelled"
                            )
                            continue
                        error = task.exception()
                        if error is not None:
                            raise error
                        observation = task.result()
                        results[index] = observation
                        if (
                            observation.kind == ObservationKind.TOOL_ERROR
                            and descriptors[index].fail_fast
                            and abort_reason is None
                        ):
                            abort_reason = f"fail-fast tool '{actions[index].tool_name}' failed"

                    if cancel_waiter is not None and cancel_waiter in done and abort_reason is None:
                        abort_reason = "session cancelled"

                # Drained before a lent slot is taken back
                if pending:
                    logger.info(f"Cancelling {len(pending)} in-flight actions: {abort_reason}")
                    for index in pending.values():
                        results[index] = self._observation(
                            actions[index], ObservationKind.CANCELLED, f"Cancelled: {abort_reason}"
                        )
                    await self._drain(set(pending))
                    pending.clear()
        except BaseException:
            await self._drain(set(pending))
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if any(r is None for r in results):
            raise InternalInvariantViolation("Batch finished with an action lacking an observation")
        return results
