"""Message data models.

A message is exactly one of three variants, discriminated by ``role``. Tool
call metadata only exists on assistant messages and the call linkage only on
tool results, so an invalid combination cannot be constructed.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class UserMessage(BaseModel):
    """Text typed by the user."""

    role: Literal["user"] = "user"
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


class AssistantMessage(BaseModel):
    """Model output: an answer, a set of tool calls, or both."""

    role: Literal["assistant"] = "assistant"
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def requests_tools(self) -> bool:
        return bool(self.tool_calls)


class ToolResultMessage(BaseModel):
    """Outcome of one tool call, linked to it by ``tool_call_id``."""

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    tool_name: str
    is_error: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


Message = Annotated[UserMessage | AssistantMessage | ToolResultMessage, Field(discriminator="role")]

message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def message_metadata(message: Message) -> dict[str, Any]:
    """Role-specific fields stored alongside the content of a persisted message."""
    if isinstance(message, AssistantMessage):
        return {"tool_calls": [call.model_dump() for call in message.tool_calls]}
    if isinstance(message, ToolResultMessage):
        return {"tool_call_id": message.tool_call_id, "name": message.tool_name, "is_error": message.is_error}
    return {}


def message_from_record(role: str, content: str, metadata: dict[str, Any] | None, created_at: datetime) -> Message:
    """Rebuild a message from its persisted role, content and metadata.

    Args:
        role: Persisted role tag (user, assistant or tool)
        content: Text payload
        metadata: Role-specific fields produced by message_metadata
        created_at: Original creation timestamp

    Returns:
        The matching message variant
    """
    metadata = metadata or {}
    data: dict[str, Any] = {"role": role, "content": content, "created_at": created_at}

    if role == "assistant":
        data["tool_calls"] = metadata.get("tool_calls") or []
    elif role == "tool":
        data["tool_call_id"] = metadata.get("tool_call_id", "")
        data["tool_name"] = metadata.get("name", "")
        data["is_error"] = metadata.get("is_error", False)

    return message_adapter.validate_python(data)
