"""Tests for the coding, context and browser tools."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from praxis.config import BrowserConfig
from praxis.errors import ToolExecutionError
from praxis.schemas import ModelRole, Turn, TurnRole
from praxis.tools.browser import BrowserTools, _truncate_output, count_elements, format_ref
from praxis.tools.coding import debug_code, explain_code, write_code
from praxis.tools.context import analyze_conversation, select_segment
from praxis.tools.registry import ToolContext


def _context(router, history=()) -> ToolContext:
    return ToolContext(router=router, session_id="sess-test", depth=0, goal="goal", history=tuple(history))


def _turns(count: int) -> list[Turn]:
    return [Turn(role=TurnRole.THOUGHT, content=f"turn {i}", index=i) for i in range(count)]


class TestCodingTools:
    """Test executor-backed coding tools."""

    @pytest.mark.asyncio
    async def test_write_code(self, make_router):
        """write_code sends a language-specific prompt to the executor."""
        router = make_router(executor_reply="fn main() {}")

        result = await write_code(
            {"task": "hello world", "language": "rust", "context": "no deps"}, _context(router)
        )

        assert result == "fn main() {}"
        assert "expert rust developer" in router.prompts[0]
        assert "Task: hello world" in router.prompts[0]
        assert "Context: no deps" in router.prompts[0]
        assert router.calls[ModelRole.EXECUTOR] == 1

    @pytest.mark.asyncio
    async def test_write_code_default_language(self, make_router):
        """Language falls back to python."""
        router = make_router()

        await write_code({"task": "sort a list", "language": None}, _context(router))

        assert "expert python developer" in router.prompts[0]

    @pytest.mark.asyncio
    async def test_explain_code(self, make_router):
        """explain_code includes the code and focus."""
        router = make_router()

        await explain_code({"code": "x = 1", "focus": "naming"}, _context(router))

        assert "x = 1" in router.prompts[0]
        assert "Focus specifically on: naming" in router.prompts[0]

    @pytest.mark.asyncio
    async def test_debug_code(self, make_router):
        """debug_code includes the error message."""
        router = make_router()

        await debug_code({"code": "1/0", "error": "ZeroDivisionError"}, _context(router))

        assert "Error message: ZeroDivisionError" in router.prompts[0]

    @pytest.mark.asyncio
    async def test_streams_tokens(self, make_router):
        """Coding tools forward the token callback."""
        router = make_router(executor_reply="chunk")
        tokens = []
        context = ToolContext(router=router, session_id="s", depth=0, goal="g", on_token=tokens.append)

        await write_code({"task": "t", "language": "go"}, context)

        assert tokens == ["chunk"]


class TestContextTools:
    """Test conversation analysis."""

    def test_select_segment_defaults(self, make_router):
        """No bounds selects the whole snapshot."""
        context = _context(make_router(), _turns(5))

        assert len(select_segment(context, None, None)) == 5

    def test_select_segment_clamps(self, make_router):
        """Out-of-range bounds are clamped."""
        context = _context(make_router(), _turns(5))

        assert [t.content for t in select_segment(context, 3, 99)] == ["turn 3", "turn 4"]
        assert [t.content for t in select_segment(context, -4, 1)] == ["turn 0"]
        assert select_segment(context, 4, 2) == []

    def test_select_segment_after_eviction(self, make_router):
        """Bounds are turn ordinals, matching the labels after older turns were evicted."""
        turns = [Turn(role=TurnRole.THOUGHT, content=f"turn {i}", index=i) for i in range(10, 15)]
        context = _context(make_router(), turns)

        assert [t.index for t in select_segment(context, 12, 14)] == [12, 13]
        assert [t.index for t in select_segment(context, 0, 11)] == [10]
        assert [t.index for t in select_segment(context, 13, None)] == [13, 14]
        assert select_segment(context, 0, 5) == []

    @pytest.mark.asyncio
    async def test_analyze_conversation(self, make_router):
        """The query and selected turns go to the executor."""
        router = make_router(executor_reply="The user asked for Rust.")

        result = await analyze_conversation(
            {"query": "Which language?", "start_index": 1, "end_index": 3},
            _context(router, _turns(5)),
        )

        assert result == "The user asked for Rust."
        prompt = router.prompts[0]
        assert "QUERY: Which language?" in prompt
        assert "turn 1" in prompt and "turn 2" in prompt
        assert "turn 3" not in prompt

    @pytest.mark.asyncio
    async def test_analyze_empty_history(self, make_router):
        """An empty history short-circuits without a model call."""
        router = make_router()

        result = await analyze_conversation({"query": "anything"}, _context(router))

        assert result == "No conversation history to analyze."
        assert router.prompts == []


class TestBrowserHelpers:
    """Test browser formatting helpers."""

    def test_format_ref(self):
        """Bare element refs get the @ prefix."""
        assert format_ref("e12") == "@e12"
        assert format_ref(" e3 ") == "@e3"
        assert format_ref("@e4") == "@e4"
        assert format_ref("#submit") == "#submit"

    def test_truncate_output(self):
        """Output over the byte limit is truncated with a marker."""
        assert _truncate_output("short", 100) == "short"
        truncated = _truncate_output("a" * 200, 100)
        assert truncated.startswith("a" * 100)
        assert truncated.endswith("[output truncated]")

    def test_count_elements(self):
        """Element counts come from the refs map."""
        snapshot = json.dumps({"success": True, "data": {"refs": {"e1": {}, "e2": {}}}})

        assert count_elements(snapshot) == 2
        assert count_elements("not json") is None
        assert count_elements(json.dumps({"data": {}})) is None


def _process(stdout=b"", stderr=b"", returncode=0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    process.returncode = returncode
    return process


class TestBrowserTools:
    """Test agent-browser command execution."""

    @pytest.fixture
    def browser(self):
        return BrowserTools(BrowserConfig(enabled=True, session_name="test", headed=True, timeout_seconds=5))

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_run_builds_command(self, mock_exec, browser):
        """Commands carry the session name and headed flag."""
        mock_exec.return_value = _process(stdout=b"ok\n")

        output = await browser._run("get", "text", "@e1")

        assert output == "ok\n"
        args = mock_exec.call_args.args
        assert args == ("agent-browser", "--session", "test", "--headed", "get", "text", "@e1")

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_run_nonzero_exit(self, mock_exec, browser):
        """A failing command raises ToolExecutionError with stderr."""
        mock_exec.return_value = _process(stderr=b"element not found", returncode=1)

        with pytest.raises(ToolExecutionError, match="element not found"):
            await browser._run("click", "@e9")

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_run_missing_executable(self, mock_exec, browser):
        """A missing CLI is reported with install instructions."""
        mock_exec.side_effect = FileNotFoundError("agent-browser")

        with pytest.raises(ToolExecutionError, match="npm install"):
            await browser._run("open", "https://example.com")

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_run_cancelled_reaps_process(self, mock_exec, browser):
        """Cancelling a command kills the process and waits for it to exit."""
        process = _process(returncode=-9)

        async def hang():
            await asyncio.sleep(5)

        process.communicate = AsyncMock(side_effect=hang)
        mock_exec.return_value = process

        task = asyncio.create_task(browser._run("open", "https://example.com"))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        process.kill.assert_called_once()
        process.wait.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_open_waits_and_snapshots(self, mock_exec, browser, make_router):
        """browser_url opens, waits for load and returns a snapshot."""
        mock_exec.side_effect = [
            _process(stdout=b""),
            _process(stdout=b""),
            _process(stdout=b'{"data": {"refs": {"e1": {}}}}'),
        ]

        result = await browser.open({"url": "https://example.com"}, _context(make_router()))

        commands = [call.args[3:] for call in mock_exec.call_args_list]
        assert commands == [
            ("--headed", "open", "https://example.com"),
            ("--headed", "wait", "--load", "networkidle"),
            ("--headed", "snapshot", "-i", "-c", "--json"),
        ]
        assert result.startswith("Navigated to https://example.com")

    @pytest.mark.asyncio
    @patch("praxis.tools.browser.asyncio.create_subprocess_exec")
    async def test_click_formats_ref(self, mock_exec, browser, make_router):
        """Clicks use the @-prefixed ref."""
        mock_exec.return_value = _process(stdout=b"{}")

        await browser.click({"ref": "e8"}, _context(make_router()))

        assert mock_exec.call_args_list[0].args[-2:] == ("click", "@e8")

    def test_descriptors(self, browser):
        """Seven browser tools are described."""
        names = [d.name for d in browser.descriptors()]

        assert names == [
            "browser_url",
            "browser_click",
            "browser_fill",
            "browser_get_text",
            "browser_screenshot",
            "browser_snapshot",
            "browser_close",
        ]
