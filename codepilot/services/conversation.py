"""Conversation service composing history windows and running turns."""

from codepilot.graphs.conversation import TurnEngine, TurnResult
from codepilot.models.messages import UserMessage
from codepilot.services.conversation_store import ConversationStore
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationService:
    """Entry point used by interfaces to talk to the agent.

    Every turn is built from the most recent ``history_limit`` messages of the
    conversation followed by the new user message.
    """

    def __init__(self, engine: TurnEngine, store: ConversationStore, history_limit: int = 10):
        """Initialize conversation service.

        Args:
            engine: Turn engine executing the agent graph
            store: Conversation store providing the history window
            history_limit: Number of prior messages sent with each turn
        """
        self.engine = engine
        self.store = store
        self.history_limit = history_limit

        logger.info(f"ConversationService initialized with a history window of {history_limit} messages")

    async def process_message(
        self, conversation_id: str, message: str, working_directory: str | None = None
    ) -> TurnResult:
        """Process a user message and return the turn's outcome.

        Args:
            conversation_id: Conversation the message belongs to
            message: User's message
            working_directory: Directory reported to the model

        Returns:
            Result of the turn, including the messages it produced

        Raises:
            ValueError: If the message is empty
        """
        text = message.strip()
        if not text:
            raise ValueError("Message must not be empty")

        history = self.store.read_recent_messages(conversation_id, self.history_limit)
        logger.info(f"Processing message for conversation {conversation_id} with {len(history)} history messages")

        return await self.engine.run(
            [*history, UserMessage(content=text)],
            conversation_id,
            working_directory=working_directory,
        )
