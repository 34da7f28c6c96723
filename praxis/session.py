"""Session state and the arena-style session table."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum

from praxis.errors import InternalInvariantViolation
from praxis.history import HistoryStore
from praxis.schemas import ErrorDetail, SessionResult, SessionStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.ABORTED,
        SessionStatus.TURN_BUDGET_EXCEEDED,
        SessionStatus.DEPTH_BUDGET_EXCEEDED,
        SessionStatus.ERROR,
    }
)


class LoopState(str, Enum):
    """ReAct loop controller states."""

    AWAITING_THOUGHT = "awaiting_thought"
    AWAITING_ACTION = "awaiting_action"
    AWAITING_OBSERVATION = "awaiting_observation"
    TERMINAL = "terminal"


def new_session_id() -> str:
    return f"sess-{uuid.uuid4().hex[:12]}"


@dataclass
class Session:
    """State of one top-level or delegated loop.

    Owned and mutated only by the loop controller running it.
    """

    goal: str
    max_turns: int
    max_history: int
    max_depth: int
    depth: int = 0
    parent_id: str | None = None
    id: str = field(default_factory=new_session_id)
    turn_count: int = 0
    status: SessionStatus = SessionStatus.RUNNING
    state: LoopState = LoopState.AWAITING_THOUGHT
    output: str | None = None
    error: ErrorDetail | None = None
    allowed_tools: frozenset[str] = frozenset()
    history: HistoryStore = field(init=False)
    holds_slot: bool = False

    def __post_init__(self) -> None:
        if self.max_turns <= 0:
            raise ValueError("max_turns must be > 0")
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.depth > self.max_depth:
            raise InternalInvariantViolation(
                f"Session depth {self.depth} exceeds max_depth {self.max_depth}"
            )
        self.history = HistoryStore(self.max_history)

    @property
    def remaining_turns(self) -> int:
        return self.max_turns - self.turn_count

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def allows(self, tool_name: str) -> bool:
        """An empty allowlist permits every registered tool."""
        return not self.allowed_tools or tool_name in self.allowed_tools

    def finish(
        self,
        status: SessionStatus,
        output: str | None = None,
        error: ErrorDetail | None = None,
    ) -> None:
        """Move the session to a terminal status."""
        if status not in TERMINAL_STATUSES:
            raise InternalInvariantViolation(f"{status.value} is not a terminal status")
        if self.turn_count > self.max_turns:
            raise InternalInvariantViolation(
                f"turn_count {self.turn_count} exceeds max_turns {self.max_turns}"
            )
        self.status = status
        self.state = LoopState.TERMINAL
        if output is not None:
            self.output = output
        self.error = error
        logger.info(
            f"Session {self.id} (depth {self.depth}) finished: {status.value} "
            f"after {self.turn_count}/{self.max_turns} turns"
        )

    def to_result(self) -> SessionResult:
        return SessionResult(
            session_id=self.id,
            parent_id=self.parent_id,
            status=self.status,
            output=self.output,
            turn_count=self.turn_count,
            max_turns=self.max_turns,
            depth=self.depth,
            history=list(self.history.turns()),
            error=self.error,
        )


class SessionTable:
    """Arena of live sessions indexed by id.

    Parent links are stored as ids and used only for budget lookups.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, session: Session) -> Session:
        if session.id in self._sessions:
            raise InternalInvariantViolation(f"Session {session.id} registered twice")
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remaining_budget(self, session_id: str) -> int:
        """Turns the given session may still spend."""
        session = self._sessions.get(session_id)
        if session is None:
            raise InternalInvariantViolation(f"Unknown session: {session_id}")
        return session.remaining_turns

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
