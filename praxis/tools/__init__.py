"""Tool registry and the default Praxis toolset."""

from __future__ import annotations

import logging

from praxis.config import Config
from praxis.tools.browser import BrowserTools
from praxis.tools.coding import coding_tools
from praxis.tools.context import context_tools
from praxis.tools.delegate import DELEGATE_TOOL_NAME, delegation_tools
from praxis.tools.registry import ToolContext, ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "DELEGATE_TOOL_NAME",
    "BrowserTools",
    "ToolContext",
    "ToolDescriptor",
    "ToolRegistry",
    "build_default_registry",
]


def build_default_registry(config: Config, browser: BrowserTools | None = None) -> ToolRegistry:
    """Registry with coding, context and delegation tools, plus browser tools when enabled."""
    registry = ToolRegistry()
    for descriptor in coding_tools() + context_tools() + delegation_tools():
        registry.register(descriptor)

    if config.browser.enabled:
        browser = browser or BrowserTools(config.browser)
        for descriptor in browser.descriptors():
            registry.register(descriptor)

    logger.info(f"Registered {len(registry)} tools: {', '.join(registry.names())}")
    return registry
