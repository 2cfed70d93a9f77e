"""Model gateway: turns conversation history into a model request and back."""

from collections.abc import Sequence
from typing import Protocol

from codepilot.clients.anthropic import AnthropicClient, AnthropicMessage, AnthropicTool, CacheControl
from codepilot.models.llm import (
    ContentBlock,
    ModelResponse,
    ModelToolCall,
    TextBlock,
    ToolDescriptor,
    ToolResultBlock,
    ToolUseBlock,
)
from codepilot.models.messages import AssistantMessage, Message, ToolResultMessage, UserMessage
from codepilot.tools.base import clean_json_schema
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


class ModelGateway(Protocol):
    """Request/response capability of the language model backend."""

    async def generate(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor], working_directory: str
    ) -> ModelResponse: ...


def get_system_prompt(working_directory: str) -> str:
    """Generate the system prompt for a working directory.

    Args:
        working_directory: Directory the user is working in

    Returns:
        System prompt string
    """
    return f"""You are a proactive AI coding assistant with tool access.

CORE PRINCIPLES:
1. Working Directory: {working_directory}
2. ALWAYS use tools - never fabricate or assume information
3. Use full absolute paths for file operations
4. Execute immediately without asking for confirmation unless genuinely ambiguous

TOOL USAGE RULES:
- To see files: list_directory or list_allowed_directories first
- To read content: read_file or read_multiple_files with full paths
- To create/modify: write_file with full path
- When user says "here" or "current directory", use: {working_directory}

WORKFLOW:
1. Understand the request
2. Use tools to gather needed information
3. Execute the action with tools
4. Report results concisely

EXAMPLES:
User: "list files" -> list_directory("{working_directory}")
User: "read package.json" -> read_file("{working_directory}/package.json")
User: "create test.js" -> write_file("{working_directory}/test.js", <content>)
User: "summarize the project" -> list_directory -> read relevant files -> provide summary

Be direct, use tools proactively, and complete tasks efficiently."""


def to_anthropic_messages(messages: Sequence[Message]) -> list[AnthropicMessage]:
    """Convert conversation history to Anthropic messages.

    Assistant tool calls become ``tool_use`` blocks and consecutive tool
    results are grouped into a single user turn of ``tool_result`` blocks.
    History that cannot be sent as-is after windowing is dropped: anything
    before the first user message, tool results whose originating call is not
    part of the preceding assistant message, and tool calls that never got a
    result (an interrupted turn).
    """
    converted: list[AnthropicMessage] = []
    open_call_ids: set[str] = set()
    pending_results: list[ContentBlock] = []
    last_assistant: AnthropicMessage | None = None

    def close_step() -> None:
        if pending_results:
            converted.append(AnthropicMessage(role="user", content=list(pending_results)))
            pending_results.clear()
        if last_assistant is not None and open_call_ids and isinstance(last_assistant.content, list):
            logger.debug(f"Dropping unanswered tool calls from history: {sorted(open_call_ids)}")
            last_assistant.content = [
                block
                for block in last_assistant.content
                if not (isinstance(block, ToolUseBlock) and block.id in open_call_ids)
            ]
            if not last_assistant.content:
                converted[:] = [m for m in converted if m is not last_assistant]
        open_call_ids.clear()

    for message in messages:
        if isinstance(message, ToolResultMessage):
            if message.tool_call_id not in open_call_ids:
                logger.debug(f"Skipping tool result {message.tool_call_id} without a matching call in history")
                continue
            open_call_ids.discard(message.tool_call_id)
            pending_results.append(
                ToolResultBlock(tool_use_id=message.tool_call_id, content=message.content, is_error=message.is_error)
            )
            continue

        close_step()
        last_assistant = None

        if isinstance(message, UserMessage):
            converted.append(AnthropicMessage(role="user", content=message.content))
        elif isinstance(message, AssistantMessage):
            if not converted:
                continue
            blocks: list[ContentBlock] = []
            if message.content:
                blocks.append(TextBlock(text=message.content))
            for call in message.tool_calls:
                blocks.append(ToolUseBlock(id=call.id, name=call.name, input=call.arguments))
                open_call_ids.add(call.id)
            if blocks:
                last_assistant = AnthropicMessage(role="assistant", content=blocks)
                converted.append(last_assistant)

    close_step()
    return converted


def to_anthropic_tools(tools: Sequence[ToolDescriptor]) -> list[AnthropicTool]:
    """Convert tool descriptors, caching the tool block on the last definition."""
    anthropic_tools = []
    for i, tool in enumerate(tools):
        cache_control = CacheControl(type="ephemeral", ttl="5m") if i == len(tools) - 1 else None
        anthropic_tools.append(
            AnthropicTool(
                name=tool.name,
                description=tool.description or "No description provided",
                input_schema=clean_json_schema(tool.input_schema),
                cache_control=cache_control,
            )
        )
    return anthropic_tools


class AnthropicModelGateway:
    """Model gateway backed by the Anthropic Messages API."""

    def __init__(self, client: AnthropicClient):
        """Initialize the gateway.

        Args:
            client: Configured Anthropic client
        """
        self.client = client

    async def generate(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor], working_directory: str
    ) -> ModelResponse:
        """Ask the model for the next step of the conversation.

        Raises:
            GatewayError: If the API call fails
        """
        anthropic_messages = to_anthropic_messages(messages)
        anthropic_tools = to_anthropic_tools(tools)

        logger.debug(f"Calling LLM with {len(anthropic_messages)} messages and {len(anthropic_tools)} tools")
        response = await self.client.create_message(
            messages=anthropic_messages,
            system_prompt=get_system_prompt(working_directory),
            tools=anthropic_tools,
        )

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        tool_calls = [
            ModelToolCall(id=block.id, name=block.name, arguments=block.input)
            for block in response.content
            if isinstance(block, ToolUseBlock)
        ]

        logger.info(
            f"LLM response - stop reason: {response.stop_reason}, tool calls: {len(tool_calls)}, "
            f"tokens in/out: {response.usage.input_tokens}/{response.usage.output_tokens}"
        )
        return ModelResponse(text=text, tool_calls=tool_calls, stop_reason=response.stop_reason, usage=response.usage)
