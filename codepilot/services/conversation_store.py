"""Two-tier conversation storage.

The in-memory tier is authoritative for every read during a process lifetime.
Each write is mirrored to an optional durable tier; a failing durable tier is
switched off for the rest of the process and never affects the caller.
"""

from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from cuid2 import cuid_wrapper

from codepilot.models.conversation import Conversation, StoredMessage, ToolExecution
from codepilot.models.messages import Message
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


class DurableConversationRepository(Protocol):
    """Write contract of the durable tier."""

    async def create_conversation(self, conversation: Conversation) -> None: ...

    async def append_messages(self, conversation_id: str, messages: list[StoredMessage]) -> None: ...

    async def append_tool_execution(self, execution: ToolExecution) -> None: ...

    async def save_state(self, conversation_id: str, state: dict[str, Any], step: int) -> None: ...

    async def close(self) -> None: ...


class ConversationStore:
    """Owns every conversation for the lifetime of the process."""

    def __init__(self, durable: DurableConversationRepository | None = None):
        """Initialize the store.

        Args:
            durable: Optional durable tier; without one the store is memory-only
        """
        self._conversations: dict[str, Conversation] = {}
        self._durable = durable
        self._durable_available = durable is not None
        self._message_counter = 0
        self._tool_execution_counter = 0

    @property
    def durable_available(self) -> bool:
        """Whether writes are still mirrored to the durable tier."""
        return self._durable_available

    async def create_conversation(self, owner_id: str = "default-user", title: str | None = None) -> Conversation:
        """Create an empty conversation.

        Args:
            owner_id: Owner recorded on the conversation
            title: Optional title, defaults to a timestamped one

        Returns:
            The new conversation
        """
        conversation_id = self._generate_conversation_id()
        now = datetime.now(UTC)
        conversation = Conversation(
            id=conversation_id,
            owner_id=owner_id,
            title=title or f"Conversation {now.isoformat()}",
            created_at=now,
            updated_at=now,
        )
        self._conversations[conversation_id] = conversation
        logger.info(f"Created conversation {conversation_id} for {owner_id}")

        await self._mirror("create_conversation", lambda durable: durable.create_conversation(conversation))
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        return self._conversations.get(conversation_id)

    async def append_messages(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Append messages in order; unknown conversations are ignored."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.debug(f"Dropping {len(messages)} messages for unknown conversation {conversation_id}")
            return
        if not messages:
            return

        stored = [
            StoredMessage(id=self._next_message_id(), conversation_id=conversation_id, message=message)
            for message in messages
        ]
        conversation.messages.extend(stored)
        conversation.touch()

        await self._mirror("append_messages", lambda durable: durable.append_messages(conversation_id, stored))

    async def append_tool_execution(self, conversation_id: str, execution: ToolExecution) -> None:
        """Record a tool execution; unknown conversations are ignored."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.debug(f"Dropping tool execution {execution.tool_name} for unknown conversation {conversation_id}")
            return

        self._tool_execution_counter += 1
        execution.id = f"tool_{self._tool_execution_counter}"
        execution.conversation_id = conversation_id
        conversation.tool_executions.append(execution)
        conversation.touch()

        await self._mirror("append_tool_execution", lambda durable: durable.append_tool_execution(execution))

    async def save_state(self, conversation_id: str, state: dict[str, Any], step: int) -> None:
        """Record an end-of-turn state snapshot; unknown conversations are ignored."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return

        conversation.state = state
        conversation.touch()

        await self._mirror("save_state", lambda durable: durable.save_state(conversation_id, state, step))

    def read_recent_messages(self, conversation_id: str, limit: int = 20) -> list[Message]:
        """Return the last ``limit`` messages, oldest first.

        Args:
            conversation_id: Conversation identifier
            limit: Maximum number of messages in the window

        Returns:
            Messages in chronological order; empty for unknown conversations
        """
        conversation = self._conversations.get(conversation_id)
        if conversation is None or limit <= 0:
            return []
        return [stored.message for stored in conversation.messages[-limit:]]

    def list_tool_executions(self, conversation_id: str) -> list[ToolExecution]:
        """Return the tool execution log of a conversation."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return []
        return list(conversation.tool_executions)

    async def close(self) -> None:
        """Release the durable tier, if any."""
        if self._durable is None:
            return
        try:
            await self._durable.close()
        except Exception as e:
            logger.warning(f"Error closing durable store: {e}")

    async def _mirror(
        self, operation: str, write: Callable[[DurableConversationRepository], Awaitable[None]]
    ) -> None:
        """Attempt a durable write; the first failure disables the durable tier."""
        if not self._durable_available or self._durable is None:
            return

        try:
            await write(self._durable)
        except Exception as e:
            self._durable_available = False
            logger.warning(f"Durable store failed during {operation}, continuing with in-memory storage only: {e}")

    def _next_message_id(self) -> str:
        self._message_counter += 1
        return f"msg_{self._message_counter}"

    def _generate_conversation_id(self) -> str:
        """Generate a CUID-based conversation ID unique within the process."""
        conversation_id = cuid()
        while conversation_id in self._conversations:
            conversation_id = cuid()
        return conversation_id
