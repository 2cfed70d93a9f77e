"""Edge logic and routing for the agent graph."""

from typing import Literal

from codepilot.graphs.state import AgentState
from codepilot.models.messages import AssistantMessage
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


def route_model_output(state: AgentState) -> Literal["tools", "end"]:
    """Route from the model node.

    Dispatch happens only when the model step asked to continue and the
    message it produced actually carries tool calls.
    """
    last_message = state.messages[-1] if state.messages else None
    if state.should_continue and isinstance(last_message, AssistantMessage) and last_message.requests_tools:
        logger.debug(f"Routing {len(last_message.tool_calls)} tool calls to dispatch")
        return "tools"
    return "end"


def route_tool_output(state: AgentState) -> Literal["model", "limit"]:
    """Route from the tool node back to the model, unless the round limit is reached."""
    if state.tool_rounds >= state.max_tool_rounds:
        logger.warning(
            f"Conversation {state.conversation_id} reached {state.tool_rounds} tool rounds, stopping the turn"
        )
        return "limit"
    return "model"
