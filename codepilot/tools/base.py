"""Base types and definitions for tool providers."""

import json
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from codepilot.models.llm import ToolDescriptor


@runtime_checkable
class ToolProvider(Protocol):
    """An external collaborator exposing one or more named tools.

    ``connect`` and ``disconnect`` are independently fallible, except that
    ``disconnect`` must never raise and must be safe to call repeatedly.
    """

    name: str

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def list_tools(self) -> list[ToolDescriptor]: ...

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any: ...


@dataclass(frozen=True)
class ToolSuccess:
    """Result of a tool call that completed."""

    tool_name: str
    output: Any
    provider: str

    ok = True

    def as_content(self) -> str:
        """Text handed back to the model."""
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, default=str)

    def as_payload(self) -> Any:
        return self.output


@dataclass(frozen=True)
class ToolFailure:
    """Result of a tool call that could not be resolved or raised."""

    tool_name: str
    error: str
    provider: str | None = None

    ok = False

    def as_content(self) -> str:
        """Structured error payload handed back to the model."""
        return json.dumps({"error": self.error})

    def as_payload(self) -> dict[str, str]:
        return {"error": self.error}


ToolOutcome = ToolSuccess | ToolFailure


def clean_json_schema(schema: Any) -> dict[str, Any]:
    """Reduce a JSON schema to the keywords model backends accept.

    Keeps ``type``, ``properties``, ``required``, ``items``, ``enum`` and
    ``description``, recursing into properties and items. Drops ``$schema``,
    ``additionalProperties`` and any other dialect-specific metadata.

    Args:
        schema: Schema as advertised by a provider (may be missing or malformed)

    Returns:
        Cleaned schema; an empty object schema when the input is unusable
    """
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    cleaned: dict[str, Any] = {"type": schema.get("type") or "object"}

    properties = schema.get("properties")
    if isinstance(properties, dict):
        cleaned["properties"] = {key: clean_json_schema(value) for key, value in properties.items()}

    if "items" in schema:
        cleaned["items"] = clean_json_schema(schema["items"])

    required = schema.get("required")
    if isinstance(required, list):
        cleaned["required"] = list(required)

    if schema.get("description"):
        cleaned["description"] = schema["description"]

    if schema.get("enum"):
        cleaned["enum"] = list(schema["enum"])

    return cleaned
