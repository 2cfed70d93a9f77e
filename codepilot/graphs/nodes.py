"""Node implementations for the agent graph."""

import itertools
import time
from dataclasses import dataclass
from typing import Any

from langchain_core.runnables import RunnableConfig

from codepilot.graphs.state import AgentState
from codepilot.models.conversation import ToolExecution
from codepilot.models.llm import ModelToolCall
from codepilot.models.messages import AssistantMessage, ToolCall, ToolResultMessage, UserMessage
from codepilot.services.conversation_store import ConversationStore
from codepilot.services.llm import ModelGateway
from codepilot.tools.registry import ToolRegistry
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)

MODEL_ERROR_MESSAGE = "Sorry, I encountered an error while processing your request."
ROUND_LIMIT_MESSAGE = (
    "I stopped because this request needed more tool calls than allowed in a single turn. "
    "Ask me to continue if you want me to keep going."
)

_call_sequence = itertools.count()


@dataclass
class EngineContext:
    """Collaborators handed to every node through the run configuration."""

    gateway: ModelGateway
    registry: ToolRegistry
    store: ConversationStore


def get_engine_context(config: RunnableConfig) -> EngineContext:
    """Extract the engine context from a run configuration.

    Raises:
        ValueError: If the graph was invoked without one
    """
    context = (config.get("configurable") or {}).get("engine")
    if not isinstance(context, EngineContext):
        raise ValueError("Agent graph must be invoked with an 'engine' context in its configuration")
    return context


def assign_call_ids(calls: list[ModelToolCall]) -> list[ToolCall]:
    """Give every requested call an identifier unique within the conversation.

    Identifiers supplied by the model are kept; missing ones are derived from
    the current time and a process-wide sequence number.
    """
    stamp = int(time.time() * 1000)
    return [
        ToolCall(id=call.id or f"call_{stamp}_{next(_call_sequence)}", name=call.name, arguments=call.arguments)
        for call in calls
    ]


async def user_input_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Persist the user message that opened this turn."""
    context = get_engine_context(config)

    latest = state.messages[-1] if state.messages else None
    if isinstance(latest, UserMessage):
        await context.store.append_messages(state.conversation_id, [latest])
    else:
        logger.warning(f"Turn for conversation {state.conversation_id} did not start with a user message")

    return {"should_continue": True}


async def model_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Ask the model for the next step and persist its answer.

    Any failure while listing tools or calling the model ends the turn with a
    fixed apology instead of propagating.
    """
    context = get_engine_context(config)
    logger.info(f"Model node processing for conversation {state.conversation_id}")

    try:
        tools = await context.registry.list_all_tools()
        response = await context.gateway.generate(state.messages, tools, state.working_directory or "")
    except Exception as e:
        logger.error(f"Model node error: {e}", exc_info=True)
        message = AssistantMessage(content=MODEL_ERROR_MESSAGE)
        await context.store.append_messages(state.conversation_id, [message])
        return {"messages": [message], "should_continue": False}

    if response.has_tool_calls:
        logger.info(f"Model requested {len(response.tool_calls)} tool calls")
        message = AssistantMessage(content=response.text, tool_calls=assign_call_ids(response.tool_calls))
    else:
        message = AssistantMessage(content=response.text)

    await context.store.append_messages(state.conversation_id, [message])
    return {"messages": [message], "should_continue": message.requests_tools}


async def tool_use_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Dispatch every tool call of the last assistant message, in order.

    Each call gets a tool execution record and exactly one result message, so
    a failing call never prevents the others from running.
    """
    context = get_engine_context(config)

    last_message = state.messages[-1] if state.messages else None
    calls = last_message.tool_calls if isinstance(last_message, AssistantMessage) else []

    result_messages: list[ToolResultMessage] = []
    tool_results: dict[str, Any] = {}

    for call in calls:
        execution = ToolExecution(tool_name=call.name, input=call.arguments, tool_call_id=call.id)
        execution.start()

        outcome = await context.registry.dispatch(call.name, call.arguments)
        if outcome.ok:
            execution.complete(outcome.output)
        else:
            logger.warning(f"Tool {call.name} failed: {outcome.error}")
            execution.fail(outcome.error)

        await context.store.append_tool_execution(state.conversation_id, execution)

        result_message = ToolResultMessage(
            content=outcome.as_content(),
            tool_call_id=call.id,
            tool_name=call.name,
            is_error=not outcome.ok,
        )
        await context.store.append_messages(state.conversation_id, [result_message])

        result_messages.append(result_message)
        tool_results[call.id] = outcome.as_payload()

    return {
        "messages": result_messages,
        "tool_results": tool_results,
        "tool_rounds": state.tool_rounds + 1,
    }


async def round_limit_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
    """Close a turn that used up its tool round limit."""
    context = get_engine_context(config)

    message = AssistantMessage(content=ROUND_LIMIT_MESSAGE)
    await context.store.append_messages(state.conversation_id, [message])
    return {"messages": [message], "should_continue": False}
