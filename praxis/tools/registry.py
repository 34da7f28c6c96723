"""Tool registry: name-keyed descriptors with JSON-schema argument validation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError, create_model

from praxis.errors import InvalidAction
from praxis.policies import get_policy
from praxis.schemas import ToolCategory, ToolInfo, Turn

if TYPE_CHECKING:
    from praxis.router import DualModelRouter

logger = logging.getLogger(__name__)

# JSON Schema type to Python type mapping
_JSON_TYPE_MAP: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


@dataclass
class ToolContext:
    """What a running tool may see of its session.

    ``history`` is a snapshot taken when the batch was dispatched.
    """

    router: DualModelRouter
    session_id: str
    depth: int
    goal: str
    history: tuple[Turn, ...] = ()
    on_token: Callable[[str], None] | None = None


ToolInvoke = Callable[[dict[str, Any], ToolContext], Awaitable[str]]


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable registry entry for one tool."""

    name: str
    description: str
    input_schema: dict[str, Any]
    invoke: ToolInvoke | None
    category: ToolCategory
    fail_fast: bool = False
    concurrency_safe: bool = True
    timeout_seconds: float | None = None
    delegation: bool = False

    @classmethod
    def from_policy(
        cls,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        invoke: ToolInvoke | None,
        category: ToolCategory,
        **overrides: Any,
    ) -> ToolDescriptor:
        """Build a descriptor with its category's policy defaults."""
        policy = get_policy(category)
        fields: dict[str, Any] = {
            "fail_fast": policy.fail_fast,
            "concurrency_safe": policy.concurrency_safe,
            "timeout_seconds": policy.timeout_seconds,
            "delegation": category == ToolCategory.DELEGATION,
        }
        fields.update(overrides)
        return cls(
            name=name,
            description=description,
            input_schema=input_schema,
            invoke=invoke,
            category=category,
            **fields,
        )

    def to_tool_definition(self) -> dict[str, Any]:
        """Ollama function-tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


def _schema_to_model(tool_name: str, schema: dict[str, Any]) -> type[BaseModel]:
    """Convert a flat JSON Schema object into a pydantic model."""
    properties: dict[str, Any] = schema.get("properties", {})
    required_fields = set(schema.get("required", []))

    field_definitions: dict[str, Any] = {}
    for field_name, field_schema in properties.items():
        py_type = _JSON_TYPE_MAP.get(field_schema.get("type", "string"), Any)
        item_type = _JSON_TYPE_MAP.get(field_schema.get("items", {}).get("type", ""))
        if py_type is list and item_type is not None:
            py_type = list[item_type]
        description = field_schema.get("description", "")
        default_val = field_schema.get("default")

        if field_name in required_fields:
            field_definitions[field_name] = (py_type, Field(description=description))
        else:
            field_definitions[field_name] = (
                py_type | None,
                Field(default=default_val, description=description),
            )

    safe_name = "".join(c if c.isalnum() else "_" for c in tool_name)
    return create_model(f"ToolArgs_{safe_name}", **field_definitions)


class ToolRegistry:
    """Name-keyed mapping of tool descriptors.

    Read-only after startup and safe to share between sessions. The
    registry resolves and validates; it never executes.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._models: dict[str, type[BaseModel]] = {}

    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        if descriptor.invoke is None and not descriptor.delegation:
            raise ValueError(f"Tool {descriptor.name} has no invoke capability")
        self._models[descriptor.name] = _schema_to_model(descriptor.name, descriptor.input_schema)
        self._tools[descriptor.name] = descriptor
        logger.debug(f"Registered tool {descriptor.name} ({descriptor.category.value})")
        return descriptor

    def resolve(self, tool_name: str) -> ToolDescriptor | None:
        return self._tools.get(tool_name)

    def validate(self, descriptor: ToolDescriptor, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate and coerce arguments.

        Raises:
            InvalidAction: on a schema violation
        """
        model_cls = self._models[descriptor.name]
        try:
            instance = model_cls(**arguments)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err.get('loc', ())) or '?'}: {err.get('msg')}"
                for err in e.errors()
            )
            raise InvalidAction(f"Invalid arguments for '{descriptor.name}': {details}") from e
        return instance.model_dump()

    def catalog(
        self,
        include_delegation: bool = True,
        allowed: frozenset[str] = frozenset(),
    ) -> list[dict[str, Any]]:
        """Tool definitions in registration order.

        A non-empty ``allowed`` set restricts the catalog to those names.
        """
        return [
            d.to_tool_definition()
            for d in self._tools.values()
            if (include_delegation or not d.delegation) and (not allowed or d.name in allowed)
        ]

    def names(self) -> list[str]:
        return list(self._tools)

    def tool_infos(self) -> list[ToolInfo]:
        return [
            ToolInfo(
                name=d.name,
                description=d.description,
                category=d.category,
                fail_fast=d.fail_fast,
                concurrency_safe=d.concurrency_safe,
                parameters=d.input_schema,
            )
            for d in self._tools.values()
        ]

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
