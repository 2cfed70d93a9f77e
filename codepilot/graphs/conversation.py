"""Agent graph construction and the turn engine that runs it."""

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from codepilot.graphs.edges import route_model_output, route_tool_output
from codepilot.graphs.nodes import EngineContext, model_node, round_limit_node, tool_use_node, user_input_node
from codepilot.graphs.state import AgentState
from codepilot.models.messages import Message, message_adapter
from codepilot.services.conversation_store import ConversationStore
from codepilot.services.llm import ModelGateway
from codepilot.tools.registry import ToolRegistry
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


def create_agent_graph():
    """Create the agent graph.

    The graph records the user input, then alternates between the model and
    tool dispatch until the model answers without tool calls or the tool
    round limit is reached:

        userInput -> model -> (toolUse -> model)* -> END
                                toolUse -> roundLimit -> END

    No checkpointer is attached; the conversation store owns persistence.

    Returns:
        Compiled LangGraph workflow
    """
    logger.info("Creating agent graph")

    workflow = StateGraph(AgentState)

    workflow.add_node("userInput", user_input_node)
    workflow.add_node("model", model_node)
    workflow.add_node("toolUse", tool_use_node)
    workflow.add_node("roundLimit", round_limit_node)

    workflow.set_entry_point("userInput")
    workflow.add_edge("userInput", "model")

    workflow.add_conditional_edges(
        "model",
        route_model_output,
        {
            "tools": "toolUse",
            "end": END,
        },
    )

    workflow.add_conditional_edges(
        "toolUse",
        route_tool_output,
        {
            "model": "model",
            "limit": "roundLimit",
        },
    )

    workflow.add_edge("roundLimit", END)

    return workflow.compile()


@dataclass
class TurnResult:
    """Outcome of one turn."""

    messages: list[Message]
    new_messages: list[Message]
    should_continue: bool
    tool_results: dict[str, Any] = field(default_factory=dict)
    tool_rounds: int = 0

    @property
    def final_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


class TurnEngine:
    """Runs one user turn through the agent graph."""

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        store: ConversationStore,
        max_tool_rounds: int = 10,
    ):
        """Initialize the turn engine.

        Args:
            gateway: Model backend
            registry: Tool registry used for listing and dispatch
            store: Conversation store receiving every produced message
            max_tool_rounds: Tool rounds allowed before a turn is stopped
        """
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")

        self.context = EngineContext(gateway=gateway, registry=registry, store=store)
        self.max_tool_rounds = max_tool_rounds
        self.graph = create_agent_graph()

    @property
    def recursion_limit(self) -> int:
        return 2 * self.max_tool_rounds + 4

    async def run(
        self,
        initial_messages: Sequence[Message],
        conversation_id: str,
        working_directory: str | None = None,
    ) -> TurnResult:
        """Run one turn.

        Args:
            initial_messages: Recent history followed by the new user message
            conversation_id: Conversation receiving the produced messages
            working_directory: Directory reported to the model, the process working directory by default

        Returns:
            Full message sequence of the turn and the portion produced by it
        """
        logger.info(f"Running turn for conversation {conversation_id} with {len(initial_messages)} input messages")

        initial_state = {
            "messages": list(initial_messages),
            "conversation_id": conversation_id,
            "tool_results": {},
            "tool_rounds": 0,
            "max_tool_rounds": self.max_tool_rounds,
            "should_continue": True,
            "metadata": {"working_directory": working_directory or os.getcwd()},
        }
        config: RunnableConfig = {
            "configurable": {
                "thread_id": conversation_id,
                "engine": self.context,
            },
            "recursion_limit": self.recursion_limit,
        }

        result = await self.graph.ainvoke(initial_state, config)

        messages = [message_adapter.validate_python(message) for message in result.get("messages", [])]
        turn = TurnResult(
            messages=messages,
            new_messages=messages[len(initial_messages) :],
            should_continue=bool(result.get("should_continue", False)),
            tool_results=dict(result.get("tool_results") or {}),
            tool_rounds=int(result.get("tool_rounds", 0)),
        )

        await self.context.store.save_state(
            conversation_id,
            {
                "tool_results": turn.tool_results,
                "should_continue": turn.should_continue,
                "tool_rounds": turn.tool_rounds,
            },
            step=len(messages),
        )

        logger.info(
            f"Turn for conversation {conversation_id} produced {len(turn.new_messages)} messages "
            f"in {turn.tool_rounds} tool rounds"
        )
        return turn
