"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


class ToolUseBlock(BaseModel):
    """Tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any]

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


class ToolResultBlock(BaseModel):
    """Tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


class ToolDescriptor(BaseModel):
    """A callable tool as advertised by a provider."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ModelToolCall(BaseModel):
    """A tool call as returned by the model backend."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


@dataclass
class LLMUsage:
    """Token/resource usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class ModelResponse:
    """Provider-agnostic response from the model gateway.

    Both fields may be populated; the presence of at least one tool call is
    what makes the engine dispatch.
    """

    text: str = ""
    tool_calls: list[ModelToolCall] = field(default_factory=list)
    stop_reason: str | None = None
    usage: LLMUsage | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
