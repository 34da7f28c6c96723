"""History inspection tool: lets the agent query its own session."""

from __future__ import annotations

from typing import Any

from praxis.prompts import build_context_query_prompt
from praxis.schemas import ToolCategory, Turn
from praxis.tools.registry import ToolContext, ToolDescriptor


def select_segment(context: ToolContext, start: int | None, end: int | None) -> list[Turn]:
    """Turns whose ordinal falls in [start, end), clamped to what is still retained.

    Ordinals are session-wide and survive eviction, so they match the
    ``[Turn N]`` labels the model sees.
    """
    return [
        turn
        for turn in context.history
        if (start is None or turn.index >= start) and (end is None or turn.index < end)
    ]


async def analyze_conversation(arguments: dict[str, Any], context: ToolContext) -> str:
    segment = select_segment(context, arguments.get("start_index"), arguments.get("end_index"))
    if not segment:
        return "No conversation history to analyze."
    prompt = build_context_query_prompt(arguments["query"], segment)
    return await context.router.generate(prompt)


def context_tools() -> list[ToolDescriptor]:
    return [
        ToolDescriptor.from_policy(
            name="analyze_conversation",
            description=(
                "Analyze a part of the conversation history to answer a question. "
                "Use this to recall details from earlier turns."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The question to answer about the conversation history",
                    },
                    "start_index": {
                        "type": "integer",
                        "description": "First turn number to analyze (optional, defaults to the oldest retained turn)",
                    },
                    "end_index": {
                        "type": "integer",
                        "description": "Turn number to stop before (optional, defaults to the latest turn)",
                    },
                },
                "required": ["query"],
            },
            invoke=analyze_conversation,
            category=ToolCategory.CONTEXT,
        ),
    ]
