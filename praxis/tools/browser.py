"""Browser automation tools backed by the agent-browser CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from typing import Any

from praxis.config import BrowserConfig
from praxis.errors import ToolExecutionError
from praxis.schemas import ToolCategory
from praxis.tools.registry import ToolContext, ToolDescriptor

logger = logging.getLogger(__name__)

# Output limits
MAX_OUTPUT_BYTES = 10 * 1024  # 10KB

ELEMENT_REF_PATTERN = re.compile(r"^e\d+$")


def _truncate_output(output: str, max_bytes: int = MAX_OUTPUT_BYTES) -> str:
    """Truncate output to max_bytes."""
    if len(output.encode("utf-8", errors="replace")) <= max_bytes:
        return output

    encoded = output.encode("utf-8", errors="replace")[:max_bytes]
    truncated = encoded.decode("utf-8", errors="replace")
    return truncated + "\n... [output truncated]"


def format_ref(ref: str) -> str:
    """Add the ``@`` prefix agent-browser expects on element refs."""
    ref = ref.strip()
    if ELEMENT_REF_PATTERN.match(ref):
        return f"@{ref}"
    return ref


def count_elements(snapshot_json: str) -> int | None:
    """Number of ref-tagged elements in a JSON snapshot, if it parses."""
    try:
        data = json.loads(snapshot_json)
    except ValueError:
        return None
    if isinstance(data, dict):
        data = data.get("data", data)
        refs = data.get("refs") if isinstance(data, dict) else None
        if isinstance(refs, dict):
            return len(refs)
    return None


class BrowserTools:
    """One agent-browser session shared by every browser tool."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()

    def is_available(self) -> bool:
        return shutil.which(self.config.executable) is not None

    async def _run(self, *args: str) -> str:
        cmd = [self.config.executable, "--session", self.config.session_name]
        if self.config.headed:
            cmd.append("--headed")
        cmd.extend(args)

        logger.info(f"Running browser command: {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolExecutionError(
                f"{self.config.executable} not found. Install it with: npm install -g agent-browser"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ToolExecutionError(
                f"Browser command timed out after {self.config.timeout_seconds}s: {args[0]}"
            ) from e
        except asyncio.CancelledError:
            process.kill()
            await asyncio.shield(process.wait())
            raise

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ToolExecutionError(f"agent-browser command failed: {_truncate_output(message)}")
        return _truncate_output(stdout.decode("utf-8", errors="replace"))

    async def _snapshot(self, interactive_only: bool = True) -> str:
        args = ["snapshot"]
        if interactive_only:
            args.append("-i")
        args.extend(["-c", "--json"])
        return await self._run(*args)

    async def _wait_for_load(self) -> None:
        try:
            await self._run("wait", "--load", "networkidle")
        except ToolExecutionError as e:
            logger.debug(f"Wait for network idle failed, continuing: {e}")

    async def open(self, arguments: dict[str, Any], context: ToolContext) -> str:
        url = arguments["url"]
        await self._run("open", url)
        if arguments.get("wait_for_load", True) is not False:
            await self._wait_for_load()
        snapshot = await self._snapshot()
        return f"Navigated to {url}. Page snapshot:\n{snapshot}"

    async def click(self, arguments: dict[str, Any], context: ToolContext) -> str:
        ref = arguments["ref"]
        await self._run("click", format_ref(ref))
        await self._wait_for_load()
        snapshot = await self._snapshot()
        return f"Clicked {ref}. Updated page:\n{snapshot}"

    async def fill(self, arguments: dict[str, Any], context: ToolContext) -> str:
        ref, text = arguments["ref"], arguments["text"]
        await self._run("fill", format_ref(ref), text)
        await self._wait_for_load()
        snapshot = await self._snapshot()
        return f"Filled {ref} with '{text}'. Updated page:\n{snapshot}"

    async def get_text(self, arguments: dict[str, Any], context: ToolContext) -> str:
        output = await self._run("get", "text", format_ref(arguments["ref"]))
        return output.strip()

    async def screenshot(self, arguments: dict[str, Any], context: ToolContext) -> str:
        args = ["screenshot"]
        path = arguments.get("path")
        if path:
            args.append(path)
        if arguments.get("full_page"):
            args.append("--full")
        output = await self._run(*args)
        if path:
            return f"Screenshot saved to {path}"
        return f"Screenshot captured (base64): {output[:100]}..."

    async def snapshot(self, arguments: dict[str, Any], context: ToolContext) -> str:
        interactive_only = arguments.get("interactive_only")
        output = await self._snapshot(interactive_only is not False)
        count = count_elements(output)
        if count is None:
            return output
        return f"Page snapshot ({count} elements):\n{output}"

    async def close(self, arguments: dict[str, Any], context: ToolContext) -> str:
        await self._run("close")
        return "Browser closed"

    def descriptors(self) -> list[ToolDescriptor]:
        ref_property = {"type": "string", "description": "Element ref from snapshot (e.g., e1, e2)"}
        specs = [
            (
                "browser_url",
                "Navigate to a URL and return a snapshot of interactive elements",
                {
                    "url": {"type": "string", "description": "The URL to navigate to"},
                    "wait_for_load": {
                        "type": "boolean",
                        "description": "Wait for network idle before snapshot",
                    },
                },
                ["url"],
                self.open,
            ),
            ("browser_click", "Click an element by ref", {"ref": ref_property}, ["ref"], self.click),
            (
                "browser_fill",
                "Fill a form field with text",
                {"ref": ref_property, "text": {"type": "string", "description": "Text to enter"}},
                ["ref", "text"],
                self.fill,
            ),
            (
                "browser_get_text",
                "Get text content of an element",
                {"ref": ref_property},
                ["ref"],
                self.get_text,
            ),
            (
                "browser_screenshot",
                "Take a screenshot of the current page",
                {
                    "path": {
                        "type": "string",
                        "description": "File path to save screenshot (optional)",
                    },
                    "full_page": {
                        "type": "boolean",
                        "description": "Capture full page instead of viewport",
                    },
                },
                [],
                self.screenshot,
            ),
            (
                "browser_snapshot",
                "Get the accessibility tree of the current page",
                {
                    "interactive_only": {
                        "type": "boolean",
                        "description": "Only return interactive elements (buttons, links, inputs)",
                    },
                },
                [],
                self.snapshot,
            ),
            ("browser_close", "Close the browser", {}, [], self.close),
        ]
        return [
            ToolDescriptor.from_policy(
                name=name,
                description=description,
                input_schema={"type": "object", "properties": properties, "required": required},
                invoke=invoke,
                category=ToolCategory.BROWSER,
                timeout_seconds=max(self.config.timeout_seconds * 3, 60.0),
            )
            for name, description, properties, required, invoke in specs
        ]
