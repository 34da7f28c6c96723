"""Delegation marker tool; the engine routes its calls to the spawner."""

from __future__ import annotations

from praxis.schemas import ToolCategory
from praxis.tools.registry import ToolDescriptor

DELEGATE_TOOL_NAME = "delegate_task"


def delegation_tools() -> list[ToolDescriptor]:
    return [
        ToolDescriptor.from_policy(
            name=DELEGATE_TOOL_NAME,
            description=(
                "Delegate a self-contained sub-goal to a sub-agent with its own turn budget. "
                "The sub-agent sees only the goal and the context you pass."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "goal": {"type": "string", "description": "The sub-goal to accomplish"},
                    "context": {
                        "type": "string",
                        "description": "Facts the sub-agent needs (it cannot see this conversation)",
                    },
                    "max_turns": {
                        "type": "integer",
                        "description": "Requested turn budget (capped by the remaining budget)",
                    },
                    "tools": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Tool names the sub-agent may use (optional, defaults to all)",
                    },
                },
                "required": ["goal"],
            },
            invoke=None,
            category=ToolCategory.DELEGATION,
        ),
    ]
