"""Shared fakes and fixtures."""

import asyncio
from collections import Counter
from collections.abc import Sequence
from typing import Any

import pytest

from codepilot.models.llm import ModelResponse, ToolDescriptor
from codepilot.models.messages import Message
from codepilot.services.conversation_store import ConversationStore
from codepilot.tools.registry import ToolRegistry


class FakeProvider:
    """In-process tool provider.

    ``tools`` maps tool names to either a fixed result, a callable taking the
    arguments, or an exception instance to raise.
    """

    def __init__(
        self,
        name: str,
        tools: dict[str, Any],
        fail_connect: bool = False,
        fail_list: bool = False,
        disconnect_delay: float = 0.0,
    ):
        self.name = name
        self.tools = tools
        self.fail_connect = fail_connect
        self.fail_list = fail_list
        self.disconnect_delay = disconnect_delay
        self.connected = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.disconnect_calls = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError(f"{self.name} refused the connection")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_delay:
            await asyncio.sleep(self.disconnect_delay)
        self.connected = False

    async def list_tools(self) -> list[ToolDescriptor]:
        if self.fail_list:
            raise RuntimeError("listing failed")
        return [
            ToolDescriptor(name=name, description=f"{name} from {self.name}", input_schema={"type": "object"})
            for name in self.tools
        ]

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((tool_name, arguments))
        handler = self.tools[tool_name]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(arguments)
        return handler


class FakeGateway:
    """Model gateway replaying scripted responses.

    Entries may be ModelResponse objects or exceptions to raise. Once the
    script is exhausted, ``default`` is returned for every further call.
    """

    def __init__(self, responses: Sequence[ModelResponse | Exception] = (), default: ModelResponse | None = None):
        self.responses = list(responses)
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor], working_directory: str
    ) -> ModelResponse:
        self.calls.append(
            {"messages": list(messages), "tools": list(tools), "working_directory": working_directory}
        )
        if self.responses:
            response = self.responses.pop(0)
        elif self.default is not None:
            response = self.default
        else:
            raise AssertionError("FakeGateway ran out of scripted responses")

        if isinstance(response, Exception):
            raise response
        return response


class RecordingDurable:
    """Durable tier that records writes and can be told to fail."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.calls: Counter[str] = Counter()
        self.messages: list[Any] = []
        self.closed = False

    async def _record(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail_on or "*" in self.fail_on:
            raise OSError(f"durable {operation} failed")

    async def create_conversation(self, conversation) -> None:
        await self._record("create_conversation")

    async def append_messages(self, conversation_id: str, messages) -> None:
        await self._record("append_messages")
        self.messages.extend(messages)

    async def append_tool_execution(self, execution) -> None:
        await self._record("append_tool_execution")

    async def save_state(self, conversation_id: str, state: dict[str, Any], step: int) -> None:
        await self._record("save_state")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def store():
    """Memory-only conversation store."""
    return ConversationStore()


@pytest.fixture
def registry():
    """Empty tool registry with a short teardown timeout."""
    return ToolRegistry(disconnect_timeout=0.1)
