"""Execution policies per tool category."""

from __future__ import annotations

from dataclasses import dataclass

from praxis.schemas import ToolCategory


@dataclass(frozen=True)
class CategoryPolicy:
    """Execution policy shared by every tool of a category."""

    category: ToolCategory
    description: str
    fail_fast: bool
    concurrency_safe: bool
    timeout_seconds: float | None


# Policy definitions
POLICIES: dict[ToolCategory, CategoryPolicy] = {
    ToolCategory.CODING: CategoryPolicy(
        category=ToolCategory.CODING,
        description="Executor-backed code generation, explanation and debugging",
        fail_fast=False,
        concurrency_safe=True,
        timeout_seconds=300.0,
    ),
    ToolCategory.CONTEXT: CategoryPolicy(
        category=ToolCategory.CONTEXT,
        description="Questions about the session's own history",
        fail_fast=False,
        concurrency_safe=True,
        timeout_seconds=300.0,
    ),
    ToolCategory.BROWSER: CategoryPolicy(
        category=ToolCategory.BROWSER,
        description="agent-browser automation; one shared page, so one call at a time",
        fail_fast=True,
        concurrency_safe=False,
        timeout_seconds=60.0,
    ),
    ToolCategory.DELEGATION: CategoryPolicy(
        category=ToolCategory.DELEGATION,
        description="Nested sessions, bounded by their own turn budget",
        fail_fast=False,
        concurrency_safe=True,
        timeout_seconds=None,
    ),
}


def get_policy(category: ToolCategory) -> CategoryPolicy:
    """Get policy by category."""
    return POLICIES[category]
