"""Dual-model router over the Orchestrator and Executor roles."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from praxis.config import ModelConfig, RouterConfig
from praxis.errors import CallTimeout, EndpointUnavailable, MalformedModelOutput, ModelNotFound
from praxis.ollama import OllamaClient, StreamChunk, ToolCallData
from praxis.prompts import build_corrective_prompt
from praxis.schemas import Action, ModelRole, OrchestratorDecision

logger = logging.getLogger(__name__)

THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)
FENCED_JSON_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class RouterResponse:
    """A completed model response."""

    role: ModelRole
    model: str
    content: str
    tool_calls: list[ToolCallData] = field(default_factory=list)


class TokenStream:
    """Lazy, finite, non-restartable sequence of content chunks.

    Nothing is sent to the endpoint until iteration starts. ``aclose()``
    tears the underlying request down early.
    """

    def __init__(self, role: ModelRole, model: str, chunks: AsyncIterator[StreamChunk]):
        self.role = role
        self.model = model
        self._chunks = chunks
        self._started = False
        self._closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started or self._closed:
            raise RuntimeError("TokenStream cannot be restarted")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            async for chunk in self._chunks:
                if chunk.content:
                    yield chunk.content
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._chunks.aclose()

    @property
    def closed(self) -> bool:
        return self._closed


def _new_batch_id() -> str:
    return uuid.uuid4().hex[:8]


def _split_thinking(content: str) -> tuple[str, str]:
    """Separate ``<think>`` blocks from the visible content."""
    thoughts = [m.strip() for m in THINK_PATTERN.findall(content)]
    visible = THINK_PATTERN.sub("", content).strip()
    return "\n".join(t for t in thoughts if t), visible


def _coerce_arguments(raw: Any, tool_name: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedModelOutput(
                f"Arguments for '{tool_name}' are not valid JSON: {e}", raw=str(raw)
            ) from e
    if not isinstance(raw, dict):
        raise MalformedModelOutput(
            f"Arguments for '{tool_name}' must be an object, got {type(raw).__name__}",
            raw=json.dumps(raw),
        )
    return raw


def _build_actions(calls: list[tuple[Any, Any]], raw: str) -> list[Action]:
    batch_id = _new_batch_id()
    actions = []
    for position, (name, arguments) in enumerate(calls):
        if not isinstance(name, str) or not name.strip():
            raise MalformedModelOutput(f"Action {position} has no tool name", raw=raw)
        actions.append(
            Action(
                id=f"{batch_id}-{position}",
                tool_name=name.strip(),
                arguments=_coerce_arguments(arguments, name),
                batch_id=batch_id,
            )
        )
    return actions


def _parse_envelope(text: str) -> OrchestratorDecision:
    fenced = FENCED_JSON_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedModelOutput(f"Response looks like JSON but does not parse: {e}", raw=text) from e
    if not isinstance(data, dict):
        raise MalformedModelOutput("JSON response must be an object", raw=text)

    thought = str(data.get("thought") or "")
    if data.get("final_answer") is not None:
        return OrchestratorDecision(thought=thought, final_answer=str(data["final_answer"]))

    items = data.get("actions")
    if not isinstance(items, list) or not items:
        raise MalformedModelOutput(
            "JSON response needs a non-empty 'actions' list or a 'final_answer'", raw=text
        )
    calls = []
    for item in items:
        if not isinstance(item, dict):
            raise MalformedModelOutput("Each action must be an object", raw=text)
        calls.append((item.get("tool") or item.get("name"), item.get("arguments")))
    return OrchestratorDecision(thought=thought, actions=_build_actions(calls, text))


def parse_decision(response: RouterResponse) -> OrchestratorDecision:
    """Turn an Orchestrator response into a decision.

    Native tool calls take precedence. Otherwise content starting with ``{``
    or a fenced JSON block must be an action envelope, and any other
    non-empty content is a final answer.
    """
    thinking, visible = _split_thinking(response.content)

    if response.tool_calls:
        calls = [(call.name, call.arguments) for call in response.tool_calls]
        return OrchestratorDecision(
            thought=thinking or visible,
            actions=_build_actions(calls, response.content),
        )

    if not visible:
        raise MalformedModelOutput("Empty response from orchestrator", raw=response.content)

    if visible.startswith("{") or visible.startswith("```"):
        decision = _parse_envelope(visible)
        if not decision.thought and thinking:
            decision.thought = thinking
        return decision

    return OrchestratorDecision(thought=thinking, final_answer=visible)


class DualModelRouter:
    """Uniform access to the Orchestrator and Executor roles.

    Shared by all in-flight actions of every session; the only mutable state
    is the per-role ``calls`` counter.
    """

    def __init__(
        self,
        client: OllamaClient,
        models: ModelConfig | None = None,
        config: RouterConfig | None = None,
        streaming: bool = False,
    ):
        self.client = client
        self.models = models or ModelConfig()
        self.config = config or RouterConfig()
        self.streaming = streaming
        self.calls: dict[ModelRole, int] = {role: 0 for role in ModelRole}

    def model_for(self, role: ModelRole) -> str:
        if role == ModelRole.ORCHESTRATOR:
            return self.models.orchestrator
        return self.models.executor

    def _options(self, role: ModelRole) -> dict[str, Any]:
        if role == ModelRole.ORCHESTRATOR:
            return {"temperature": self.models.orchestrator_temperature}
        return {"temperature": self.models.executor_temperature}

    def _backoff(self, attempt: int) -> float:
        delay = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self.config.retry_backoff_max_seconds)

    async def _handle_failure(
        self, error: Exception, role: ModelRole, failures: int, timeouts: int
    ) -> None:
        """Sleep before the next attempt, or re-raise when retries are spent."""
        if isinstance(error, ModelNotFound):
            raise error
        if isinstance(error, CallTimeout):
            if timeouts > 1:
                logger.error(f"{role.value} call timed out twice, giving up")
                raise error
            logger.warning(f"{role.value} call timed out, retrying once")
            return
        if failures >= self.config.max_attempts:
            logger.error(f"{role.value} endpoint unavailable after {failures} attempts")
            raise error
        delay = self._backoff(failures)
        logger.warning(
            f"{role.value} endpoint unavailable (attempt {failures}/{self.config.max_attempts}), "
            f"retrying in {delay:.2f}s: {error}"
        )
        await asyncio.sleep(delay)

    async def _chat_with_retries(
        self,
        role: ModelRole,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
    ) -> RouterResponse:
        model = self.model_for(role)
        failures = 0
        timeouts = 0
        while True:
            try:
                result = await self.client.chat(model, messages, tools, self._options(role))
            except CallTimeout as e:
                timeouts += 1
                await self._handle_failure(e, role, failures, timeouts)
            except EndpointUnavailable as e:
                failures += 1
                await self._handle_failure(e, role, failures, timeouts)
            else:
                return RouterResponse(
                    role=role,
                    model=result.model,
                    content=result.content,
                    tool_calls=result.tool_calls,
                )

    async def _stream_with_retries(
        self, role: ModelRole, messages: list[dict[str, Any]]
    ) -> AsyncIterator[StreamChunk]:
        """Stream chunks, reconnecting only while nothing has been yielded."""
        model = self.model_for(role)
        failures = 0
        timeouts = 0
        while True:
            received = False
            try:
                async with contextlib.aclosing(
                    self.client.chat_stream(model, messages, self._options(role))
                ) as chunks:
                    async for chunk in chunks:
                        received = True
                        yield chunk
                return
            except CallTimeout as e:
                if received:
                    raise
                timeouts += 1
                await self._handle_failure(e, role, failures, timeouts)
            except EndpointUnavailable as e:
                if received:
                    raise
                failures += 1
                await self._handle_failure(e, role, failures, timeouts)

    async def submit(
        self,
        role: ModelRole,
        history_context: list[dict[str, Any]],
        tool_catalog: list[dict[str, Any]] | None = None,
        stream: bool = False,
    ) -> RouterResponse | TokenStream:
        """Send one request for a role.

        Returns a completed ``RouterResponse``, or a ``TokenStream`` when
        ``stream`` is set.
        """
        self.calls[role] += 1
        logger.debug(
            f"Submitting to {role.value} ({self.model_for(role)}): "
            f"{len(history_context)} messages, {len(tool_catalog or [])} tools, stream={stream}"
        )
        if stream:
            return TokenStream(
                role, self.model_for(role), self._stream_with_retries(role, history_context)
            )
        return await self._chat_with_retries(role, history_context, tool_catalog)

    async def orchestrate(
        self,
        history_context: list[dict[str, Any]],
        tool_catalog: list[dict[str, Any]],
    ) -> OrchestratorDecision:
        """Ask the Orchestrator for the next thought and action batch.

        Unparseable output gets one corrective re-prompt before
        MalformedModelOutput is raised.
        """
        response = await self.submit(ModelRole.ORCHESTRATOR, history_context, tool_catalog)
        try:
            return parse_decision(response)
        except MalformedModelOutput as e:
            if self.config.repair_attempts < 1:
                raise
            logger.warning(f"Orchestrator output unparseable, re-prompting: {e}")
            repair_context = [
                *history_context,
                {"role": "assistant", "content": response.content},
                {"role": "user", "content": build_corrective_prompt(str(e))},
            ]

        response = await self.submit(ModelRole.ORCHESTRATOR, repair_context, tool_catalog)
        return parse_decision(response)

    async def generate(
        self,
        prompt: str,
        on_token: Callable[[str], None] | None = None,
        system: str | None = None,
    ) -> str:
        """Free-form Executor completion for tools."""
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        if on_token is None or not self.streaming:
            response = await self.submit(ModelRole.EXECUTOR, messages)
            return response.content

        stream = await self.submit(ModelRole.EXECUTOR, messages, stream=True)
        parts = []
        async with contextlib.aclosing(stream):
            async for token in stream:
                parts.append(token)
                on_token(token)
        return "".join(parts)
