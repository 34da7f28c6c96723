"""Pydantic schemas for the Praxis data model and HTTP contracts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class TurnRole(str, Enum):
    """Roles a committed history turn can carry."""

    USER = "user"
    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    TURN_BUDGET_EXCEEDED = "turn_budget_exceeded"
    DEPTH_BUDGET_EXCEEDED = "depth_budget_exceeded"
    ERROR = "error"


class ObservationKind(str, Enum):
    """Outcome classes for a single action."""

    SUCCESS = "success"
    INVALID_ACTION = "invalid_action"
    TOOL_ERROR = "tool_error"
    CANCELLED = "cancelled"


class ModelRole(str, Enum):
    """Model roles served by the router."""

    ORCHESTRATOR = "orchestrator"
    EXECUTOR = "executor"


class ToolCategory(str, Enum):
    """Tool families with shared execution policies."""

    CODING = "coding"
    CONTEXT = "context"
    BROWSER = "browser"
    DELEGATION = "delegation"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- History ---


class Turn(BaseModel):
    """One committed unit of session history."""

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    index: int = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=utc_now)
    ref: str | None = Field(default=None, description="Correlated action id")
    kind: ObservationKind | None = None


# --- Actions / Observations ---


class Action(BaseModel):
    """A tool invocation proposed by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    batch_id: str


class Observation(BaseModel):
    """Outcome of exactly one action."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    tool_name: str
    kind: ObservationKind
    payload: str = ""
    duration: float = Field(default=0.0, ge=0.0)


class OrchestratorDecision(BaseModel):
    """Parsed orchestrator output: a thought plus actions, or a final answer."""

    thought: str = ""
    actions: list[Action] = Field(default_factory=list)
    final_answer: str | None = None

    @property
    def is_final(self) -> bool:
        return self.final_answer is not None


# --- Session results ---


class ErrorDetail(BaseModel):
    """Diagnostic detail for sessions ending in error."""

    code: str
    message: str


class SessionResult(BaseModel):
    """Terminal report of one session."""

    session_id: str
    parent_id: str | None = None
    status: SessionStatus
    output: str | None = None
    turn_count: int = 0
    max_turns: int
    depth: int = 0
    history: list[Turn] = Field(default_factory=list)
    error: ErrorDetail | None = None


# --- HTTP contracts ---


class RunRequest(BaseModel):
    """Request to run one top-level session."""

    goal: str = Field(..., min_length=1, description="Goal text seeded as the first turn")
    max_turns: int | None = Field(default=None, ge=1, le=100)
    max_history: int | None = Field(default=None, ge=1)
    max_depth: int | None = Field(default=None, ge=0, le=5)
    orchestrator_model: str | None = None
    executor_model: str | None = None


class ToolInfo(BaseModel):
    """Catalog entry exposed to front ends."""

    name: str
    description: str
    category: ToolCategory
    fail_fast: bool
    concurrency_safe: bool
    parameters: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    broker: Literal["healthy", "unhealthy"] = "healthy"
    ollama: Literal["healthy", "unhealthy"] = "healthy"
    orchestrator_model: str
    executor_model: str
    last_ollama_check: str | None = None


class ErrorResponse(BaseModel):
    """Error response from the broker."""

    detail: str
    error_code: str


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    cancelled: int
