"""Async client for the Ollama HTTP API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from praxis.config import OllamaConfig
from praxis.errors import CallTimeout, EndpointUnavailable, MalformedModelOutput, ModelNotFound

logger = logging.getLogger(__name__)

# Request/response bodies are logged at DEBUG up to this many characters
DEBUG_PREVIEW_CHARS = 500


@dataclass
class ToolCallData:
    """A raw tool call as returned by the model."""

    name: str
    arguments: Any


@dataclass
class ChatResult:
    """A completed chat response."""

    content: str
    model: str
    tool_calls: list[ToolCallData] = field(default_factory=list)
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@dataclass
class StreamChunk:
    """One line of a streamed chat response."""

    content: str
    done: bool = False
    tool_calls: list[ToolCallData] = field(default_factory=list)


def _preview(text: str) -> str:
    if len(text) > DEBUG_PREVIEW_CHARS:
        return text[:DEBUG_PREVIEW_CHARS] + "..."
    return text


def _parse_tool_calls(message: dict[str, Any]) -> list[ToolCallData]:
    calls = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") if isinstance(raw, dict) else None
        if not isinstance(function, dict):
            raise MalformedModelOutput("Tool call without a function object", raw=json.dumps(raw))
        calls.append(ToolCallData(name=function.get("name"), arguments=function.get("arguments")))
    return calls


class OllamaClient:
    """Thin async wrapper over ``/api/chat`` and ``/api/tags``.

    One ``httpx.AsyncClient`` is shared by all concurrent callers.
    """

    def __init__(
        self,
        config: OllamaConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or OllamaConfig()
        self.base_url = self.config.base_url
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.config.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _build_request(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        options: dict[str, Any] | None,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model, "messages": messages, "stream": stream}
        if tools:
            body["tools"] = tools
        if options:
            body["options"] = options
        return body

    def _raise_for_status(self, response: httpx.Response, model: str, text: str) -> None:
        if response.is_success:
            return
        if response.status_code == 404 and "not found" in text:
            raise ModelNotFound(model)
        raise EndpointUnavailable(f"Ollama API error ({response.status_code}): {text[:200]}")

    def _connect_error(self, e: Exception) -> EndpointUnavailable:
        logger.error(f"Failed to connect to Ollama at {self.base_url}: {e}")
        return EndpointUnavailable(f"Cannot connect to Ollama at {self.base_url}. Is it running?")

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> ChatResult:
        """Send a non-streaming chat request."""
        body = self._build_request(model, messages, tools, options, stream=False)
        logger.debug(f"Ollama request: {_preview(json.dumps(body))}")

        try:
            response = await self._client.post("/api/chat", json=body)
        except httpx.TimeoutException as e:
            raise CallTimeout(f"Ollama call to {model} timed out") from e
        except httpx.TransportError as e:
            raise self._connect_error(e) from e

        self._raise_for_status(response, model, response.text)
        logger.debug(f"Ollama response: {_preview(response.text)}")

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedModelOutput(f"Failed to parse response: {e}", raw=response.text) from e

        message = data.get("message") or {}
        return ChatResult(
            content=message.get("content") or "",
            model=data.get("model", model),
            tool_calls=_parse_tool_calls(message),
            prompt_tokens=data.get("prompt_eval_count"),
            completion_tokens=data.get("eval_count"),
        )

    async def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat response as newline-delimited JSON chunks."""
        body = self._build_request(model, messages, None, options, stream=True)
        logger.debug(f"Ollama stream request: {_preview(json.dumps(body))}")

        try:
            async with self._client.stream("POST", "/api/chat", json=body) as response:
                if not response.is_success:
                    text = (await response.aread()).decode("utf-8", errors="replace")
                    self._raise_for_status(response, model, text)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except ValueError:
                        logger.debug(f"Skipping unparseable stream line: {_preview(line)}")
                        continue

                    message = data.get("message") or {}
                    chunk = StreamChunk(
                        content=message.get("content") or "",
                        done=bool(data.get("done")),
                        tool_calls=_parse_tool_calls(message),
                    )
                    yield chunk
                    if chunk.done:
                        return
        except httpx.TimeoutException as e:
            raise CallTimeout(f"Ollama stream from {model} timed out") from e
        except httpx.TransportError as e:
            raise self._connect_error(e) from e

    async def list_models(self) -> list[str]:
        """Names of locally pulled models."""
        try:
            response = await self._client.get("/api/tags")
        except httpx.TimeoutException as e:
            raise CallTimeout("Listing Ollama models timed out") from e
        except httpx.TransportError as e:
            raise self._connect_error(e) from e

        if not response.is_success:
            raise EndpointUnavailable(f"Failed to list models ({response.status_code})")
        return [m["name"] for m in response.json().get("models", [])]

    async def is_model_available(self, model: str) -> bool:
        """Exact or base-name match against pulled models."""
        base = model.split(":")[0]
        return any(m == model or m.split(":")[0] == base for m in await self.list_models())

    async def health(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=5.0)
        except httpx.HTTPError:
            return False
        return response.status_code == 200
