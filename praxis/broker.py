"""HTTP broker exposing the Praxis agent to editor integrations."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from praxis.agent import Agent
from praxis.config import Config
from praxis.errors import ConfigError
from praxis.schemas import (
    CancelResponse,
    ErrorResponse,
    HealthResponse,
    RunRequest,
    SessionResult,
    ToolInfo,
)

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="Praxis Broker",
    description="HTTP front end for running Praxis agent sessions",
    version="0.1.0",
)


# Global instances
_agent: Agent | None = None
_last_ollama_check: datetime | None = None


def get_agent() -> Agent:
    """Get or create the global agent instance."""
    global _agent
    if _agent is None:
        _agent = Agent(Config.load())
    return _agent


# --- HTTP Endpoints ---


@app.post("/run", response_model=SessionResult)
async def run(request: RunRequest) -> SessionResult:
    """Run one top-level session to completion.

    Args:
        request: RunRequest with the goal and per-session overrides

    Returns:
        SessionResult with the terminal status, output and history
    """
    agent = get_agent()
    logger.info(f"Received run request: {request.goal[:80]}")

    try:
        result = await agent.run(
            request.goal,
            max_turns=request.max_turns,
            max_history=request.max_history,
            max_depth=request.max_depth,
            orchestrator=request.orchestrator_model,
            executor=request.executor_model,
        )
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(
        f"Completed session {result.session_id}: status={result.status.value}, "
        f"turns={result.turn_count}/{result.max_turns}"
    )
    return result


@app.post("/cancel", response_model=CancelResponse)
async def cancel(session_id: str | None = None) -> CancelResponse:
    """Cancel one running session, or every running session."""
    return CancelResponse(cancelled=get_agent().cancel(session_id))


@app.get("/tools", response_model=list[ToolInfo])
async def tools() -> list[ToolInfo]:
    """List registered tools."""
    return get_agent().catalog()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check broker and Ollama health."""
    global _last_ollama_check

    agent = get_agent()
    ollama_healthy = await agent.client.health()
    _last_ollama_check = datetime.now()

    return HealthResponse(
        broker="healthy",
        ollama="healthy" if ollama_healthy else "unhealthy",
        orchestrator_model=agent.config.models.orchestrator,
        executor_model=agent.config.models.executor,
        last_ollama_check=_last_ollama_check.isoformat(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail=str(exc),
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )
