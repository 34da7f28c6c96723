"""Prompt construction for both model roles."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from praxis.schemas import Turn, TurnRole

BROWSER_INSTRUCTIONS = """
## Browser Tools
- `browser_url`: Navigate to a URL. Returns a compact snapshot.
- `browser_snapshot`: Get interactive elements, tagged [ref=eN].
- `browser_fill`: Type text into an element. Args: {"ref": "e5", "text": "search query"}
- `browser_click`: Click an element. Args: {"ref": "e8"}

## Browser Workflow
1. `browser_url`: Navigate to the site.
2. Find the target element's ref (e.g. `e5`) in the latest snapshot.
3. Use that exact ref with `browser_fill` or `browser_click`.
4. Each action returns an updated snapshot. Read the latest one before picking the next ref.

When a snapshot shows `link "Sign in" [ref=e12]`, use {"ref": "e12"}. The `@` prefix is added for you."""

DELEGATION_INSTRUCTIONS = """
## Delegation
- `delegate_task`: Hand a self-contained sub-goal to a sub-agent. Args: {"goal": "...", "context": "..."}
  Sub-agents see only the goal and context you pass, not this conversation."""

RESPONSE_FORMAT = """
## Response Format
Call tools directly when you can. If you cannot, reply with JSON only:
{"thought": "...", "actions": [{"tool": "write_code", "arguments": {...}}]}
Several actions in one reply run in parallel.
When the task is complete, reply with plain text (or {"final_answer": "..."})."""


def truncate_to_chars(text: str, max_chars: int) -> str:
    """Truncate text to max_chars, breaking at word boundary."""
    if len(text) <= max_chars:
        return text
    truncated = text[: max(max_chars - 3, 0)]
    last_space = truncated.rfind(" ")
    if last_space > max_chars // 2:
        truncated = truncated[:last_space]
    return truncated + "..."


def build_system_prompt(
    browser_enabled: bool = False,
    delegation_enabled: bool = True,
    extra: str | None = None,
) -> str:
    """System prompt for the Orchestrator role."""
    parts = [
        "You are an AI agent that uses tools to accomplish tasks. Follow the ReAct pattern:",
        "1. THINK about what you need to do.",
        "2. ACT by calling appropriate tools.",
        "3. OBSERVE the results and continue or provide a final answer.",
        "",
        "## Coding Tools",
        "- `write_code`, `explain_code`, `debug_code`",
        "",
        "## Context Tools",
        "- `analyze_conversation`: Answer a question about earlier turns of this session.",
    ]
    if delegation_enabled:
        parts.append(DELEGATION_INSTRUCTIONS)
    if browser_enabled:
        parts.append(BROWSER_INSTRUCTIONS)
    parts.append(RESPONSE_FORMAT)
    parts.append("")
    parts.append("## Rules")
    parts.append("- Respond with your final answer ONLY when the task is complete.")
    parts.append("- ALWAYS read the latest observation carefully before choosing your next action.")
    parts.append("- If an observation reports an invalid action, fix the tool name or arguments.")
    if extra:
        parts.append("")
        parts.append(extra)
    return "\n".join(parts)


def format_action(tool_name: str, arguments: dict[str, Any]) -> str:
    return f"{tool_name}({json.dumps(arguments, sort_keys=True, default=str)})"


def _turn_to_message(turn: Turn) -> dict[str, str]:
    if turn.role == TurnRole.USER:
        return {"role": "user", "content": turn.content}
    if turn.role == TurnRole.THOUGHT:
        return {"role": "assistant", "content": f"Thought: {turn.content}"}
    if turn.role == TurnRole.ACTION:
        return {"role": "assistant", "content": f"Action [{turn.ref}]: {turn.content}"}
    kind = turn.kind.value if turn.kind else "success"
    return {"role": "user", "content": f"Observation [{turn.ref}] ({kind}): {turn.content}"}


def render_messages(
    goal: str,
    turns: Sequence[Turn],
    system_prompt: str,
) -> list[dict[str, str]]:
    """Render a history window as chat messages.

    The goal turn carries ordinal 0; when it has been evicted or falls
    outside the window it is re-stated first so the model never loses it.
    """
    messages = [{"role": "system", "content": system_prompt}]
    if not turns or turns[0].index != 0:
        messages.append({"role": "user", "content": goal})
    messages.extend(_turn_to_message(turn) for turn in turns)
    return messages


def build_corrective_prompt(error: str) -> str:
    """Re-prompt after unparseable Orchestrator output."""
    return "\n".join(
        [
            f"Your previous reply could not be parsed: {error}",
            "Reply again with either a tool call, a JSON object of the form",
            '{"thought": "...", "actions": [{"tool": "<name>", "arguments": {...}}]},',
            "or plain text if you are giving the final answer.",
        ]
    )


def build_subagent_prompt(name: str, depth: int) -> str:
    """Extra system prompt text for a delegated session."""
    return (
        f"You are a helpful sub-agent named '{name}' (depth {depth}). "
        "Complete the task you are given and reply with a concise final answer."
    )


def build_subagent_goal(goal: str, context: str | None) -> str:
    """Seed turn for a delegated session: the goal plus its bounded context."""
    parts = [goal]
    if context:
        parts.append("")
        parts.append("Context from the delegating agent:")
        parts.append(context)
    return "\n".join(parts)


def build_synthesis_prompt(goal: str, observations: Sequence[Turn]) -> str:
    """Executor prompt used when the turn budget runs out."""
    parts = [
        "Based on the following tool observations, provide a comprehensive answer.",
        "",
        f"Task: {goal}",
        "",
    ]
    for turn in observations:
        kind = turn.kind.value if turn.kind else "success"
        parts.append(f"[{kind}] {turn.content}")
    return "\n".join(parts)


def build_write_code_prompt(task: str, language: str, context: str | None = None) -> str:
    parts = [
        f"You are an expert {language} developer. Write clean, efficient code for the following task:",
        "",
        f"Task: {task}",
    ]
    if context:
        parts.append("")
        parts.append(f"Context: {context}")
    parts.append("")
    parts.append("Provide well-commented code with best practices. Include:")
    parts.append("- Clear function/variable names")
    parts.append("- Error handling where appropriate")
    parts.append("- Brief inline comments for complex logic")
    return "\n".join(parts)


def build_explain_code_prompt(code: str, focus: str | None = None) -> str:
    parts = ["Explain the following code in detail:", "", "```", code, "```", ""]
    if focus:
        parts.append(f"Focus specifically on: {focus}")
        parts.append("")
    parts.append("Provide a comprehensive explanation including:")
    parts.append("- What the code does at a high level")
    parts.append("- How each major part works")
    parts.append("- Any patterns or techniques used")
    parts.append("- Potential improvements or considerations")
    return "\n".join(parts)


def build_debug_code_prompt(code: str, error: str | None = None) -> str:
    parts = ["Debug the following code and identify any issues:", "", "```", code, "```", ""]
    if error:
        parts.append(f"Error message: {error}")
        parts.append("")
    parts.append("Please:")
    parts.append("1. Identify the bug(s) or issue(s)")
    parts.append("2. Explain why the problem occurs")
    parts.append("3. Provide a corrected version of the code")
    parts.append("4. Suggest any additional improvements")
    return "\n".join(parts)


def build_context_query_prompt(query: str, turns: Sequence[Turn]) -> str:
    """Prompt for answering a question about a history segment."""
    parts = [
        "Analyze the following conversation segment to answer the query.",
        "",
        f"QUERY: {query}",
        "",
        "=== CONVERSATION SEGMENT ===",
    ]
    for turn in turns:
        parts.append(f"[Turn {turn.index} - {turn.role.value}]")
        parts.append(turn.content)
        parts.append("-------------------")
    parts.append("=== END SEGMENT ===")
    parts.append("")
    parts.append("Provide a concise answer to the query based ONLY on the segment above.")
    return "\n".join(parts)
