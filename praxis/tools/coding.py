"""Executor-backed coding tools."""

from __future__ import annotations

import logging
from typing import Any

from praxis.prompts import build_debug_code_prompt, build_explain_code_prompt, build_write_code_prompt
from praxis.schemas import ToolCategory
from praxis.tools.registry import ToolContext, ToolDescriptor

logger = logging.getLogger(__name__)


async def write_code(arguments: dict[str, Any], context: ToolContext) -> str:
    prompt = build_write_code_prompt(
        task=arguments["task"],
        language=arguments.get("language") or "python",
        context=arguments.get("context"),
    )
    logger.info(f"write_code ({arguments.get('language') or 'python'}) for session {context.session_id}")
    return await context.router.generate(prompt, on_token=context.on_token)


async def explain_code(arguments: dict[str, Any], context: ToolContext) -> str:
    prompt = build_explain_code_prompt(arguments["code"], arguments.get("focus"))
    return await context.router.generate(prompt, on_token=context.on_token)


async def debug_code(arguments: dict[str, Any], context: ToolContext) -> str:
    prompt = build_debug_code_prompt(arguments["code"], arguments.get("error"))
    return await context.router.generate(prompt, on_token=context.on_token)


def coding_tools() -> list[ToolDescriptor]:
    return [
        ToolDescriptor.from_policy(
            name="write_code",
            description="Write code to accomplish a specific task",
            input_schema={
                "type": "object",
                "properties": {
                    "task": {"type": "string", "description": "The coding task to perform"},
                    "language": {
                        "type": "string",
                        "description": "Programming language (rust, python, javascript, etc.)",
                    },
                    "context": {"type": "string", "description": "Additional context or requirements"},
                },
                "required": ["task", "language"],
            },
            invoke=write_code,
            category=ToolCategory.CODING,
        ),
        ToolDescriptor.from_policy(
            name="explain_code",
            description="Explain what a piece of code does",
            input_schema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "The code to explain"},
                    "focus": {"type": "string", "description": "Specific aspect to focus on"},
                },
                "required": ["code"],
            },
            invoke=explain_code,
            category=ToolCategory.CODING,
        ),
        ToolDescriptor.from_policy(
            name="debug_code",
            description="Find and fix bugs in code",
            input_schema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "The code to debug"},
                    "error": {"type": "string", "description": "Error message if available"},
                },
                "required": ["code"],
            },
            invoke=debug_code,
            category=ToolCategory.CODING,
        ),
    ]
