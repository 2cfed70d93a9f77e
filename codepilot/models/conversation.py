"""Conversation and tool execution records."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from codepilot.models.messages import Message


class ToolExecutionStatus(StrEnum):
    """Lifecycle of one attempted tool call."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StoredMessage:
    """A message as held by the conversation store."""

    id: str
    conversation_id: str
    message: Message

    @property
    def role(self) -> str:
        return self.message.role

    @property
    def created_at(self) -> datetime:
        return self.message.created_at


@dataclass
class ToolExecution:
    """Record of one attempted tool call.

    Created when dispatch begins and finalized exactly once with either
    ``complete`` or ``fail``.
    """

    tool_name: str
    input: dict[str, Any]
    tool_call_id: str | None = None
    id: str | None = None
    conversation_id: str | None = None
    output: Any = None
    error: str | None = None
    status: ToolExecutionStatus = ToolExecutionStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_ms: int | None = None

    @property
    def finalized(self) -> bool:
        return self.status in (ToolExecutionStatus.COMPLETED, ToolExecutionStatus.FAILED)

    def start(self) -> None:
        """Mark the execution as handed to its provider."""
        self._ensure_open()
        self.status = ToolExecutionStatus.RUNNING
        self.updated_at = datetime.now(UTC)

    def complete(self, output: Any) -> None:
        """Finalize with a successful result."""
        self._finalize(ToolExecutionStatus.COMPLETED, output=output)

    def fail(self, error: str) -> None:
        """Finalize with an error payload."""
        self._finalize(ToolExecutionStatus.FAILED, output={"error": error}, error=error)

    def _finalize(self, status: ToolExecutionStatus, output: Any, error: str | None = None) -> None:
        self._ensure_open()
        now = datetime.now(UTC)
        self.status = status
        self.output = output
        self.error = error
        self.updated_at = now
        self.duration_ms = int((now - self.created_at).total_seconds() * 1000)

    def _ensure_open(self) -> None:
        if self.finalized:
            raise ValueError(f"Tool execution for {self.tool_name} is already {self.status}")


@dataclass
class Conversation:
    """Ordered, append-only message log plus tool execution side-log."""

    id: str
    owner_id: str
    title: str
    messages: list[StoredMessage] = field(default_factory=list)
    tool_executions: list[ToolExecution] = field(default_factory=list)
    state: dict[str, Any] | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def touch(self) -> None:
        """Update the last modification timestamp."""
        self.updated_at = datetime.now(UTC)
