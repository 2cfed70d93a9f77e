"""Tests for the model gateway and the Anthropic client."""

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from anthropic import APIError

from codepilot.clients.anthropic import AnthropicClient, AnthropicConfig, AnthropicMessage, AnthropicResponse
from codepilot.exceptions import ConfigurationError, GatewayError
from codepilot.models.llm import LLMUsage, TextBlock, ToolDescriptor, ToolResultBlock, ToolUseBlock
from codepilot.models.messages import AssistantMessage, ToolCall, ToolResultMessage, UserMessage
from codepilot.services.llm import AnthropicModelGateway, get_system_prompt, to_anthropic_messages, to_anthropic_tools


def make_client(**config) -> AnthropicClient:
    with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
        client = AnthropicClient(config=AnthropicConfig(**config))
    # Mock tokenizer for consistent testing
    client.tokenizer = Mock()
    client.tokenizer.encode.return_value = ["token"] * 100
    return client


class TestMessageConversion:
    """Tests for converting conversation history to Anthropic messages."""

    def test_tool_round_is_grouped(self):
        messages = [
            UserMessage(content="read both files"),
            AssistantMessage(
                content="Reading.",
                tool_calls=[
                    ToolCall(id="c1", name="read_file", arguments={"path": "a"}),
                    ToolCall(id="c2", name="read_file", arguments={"path": "b"}),
                ],
            ),
            ToolResultMessage(content="A", tool_call_id="c1", tool_name="read_file"),
            ToolResultMessage(content='{"error": "missing"}', tool_call_id="c2", tool_name="read_file", is_error=True),
            AssistantMessage(content="Done."),
        ]

        converted = to_anthropic_messages(messages)

        assert [m.role for m in converted] == ["user", "assistant", "user", "assistant"]
        assert converted[0].content == "read both files"
        assert converted[1].content == [
            TextBlock(text="Reading."),
            ToolUseBlock(id="c1", name="read_file", input={"path": "a"}),
            ToolUseBlock(id="c2", name="read_file", input={"path": "b"}),
        ]
        assert converted[2].content == [
            ToolResultBlock(tool_use_id="c1", content="A"),
            ToolResultBlock(tool_use_id="c2", content='{"error": "missing"}', is_error=True),
        ]
        assert converted[3].content == [TextBlock(text="Done.")]

    def test_window_starting_mid_round_is_trimmed(self):
        """History cut by the window never starts with an orphan result or answer."""
        messages = [
            ToolResultMessage(content="old", tool_call_id="c0", tool_name="read_file"),
            AssistantMessage(content="old answer"),
            UserMessage(content="next question"),
        ]

        converted = to_anthropic_messages(messages)

        assert len(converted) == 1
        assert converted[0].content == "next question"

    def test_unanswered_tool_calls_are_dropped(self):
        messages = [
            UserMessage(content="first"),
            AssistantMessage(tool_calls=[ToolCall(id="c1", name="read_file", arguments={})]),
            UserMessage(content="second"),
        ]

        converted = to_anthropic_messages(messages)

        assert [m.content for m in converted] == ["first", "second"]

    def test_unanswered_call_keeps_text(self):
        messages = [
            UserMessage(content="first"),
            AssistantMessage(content="Let me check", tool_calls=[ToolCall(id="c1", name="read_file", arguments={})]),
        ]

        converted = to_anthropic_messages(messages)

        assert converted[-1].content == [TextBlock(text="Let me check")]


class TestToolConversion:
    """Tests for converting tool descriptors."""

    def test_schemas_cleaned_and_last_tool_cached(self):
        tools = [
            ToolDescriptor(
                name="read_file", description="Read a file", input_schema={"type": "object", "$schema": "x"}
            ),
            ToolDescriptor(name="web_search", input_schema={"type": "object", "additionalProperties": False}),
        ]

        converted = to_anthropic_tools(tools)

        assert converted[0].input_schema == {"type": "object"}
        assert converted[0].cache_control is None
        assert converted[1].description == "No description provided"
        assert converted[1].cache_control is not None

    def test_system_prompt_mentions_working_directory(self):
        prompt = get_system_prompt("/home/dev/project")
        assert "Working Directory: /home/dev/project" in prompt
        assert 'list_directory("/home/dev/project")' in prompt


class TestAnthropicModelGateway:
    """Tests for AnthropicModelGateway.generate."""

    @pytest.mark.asyncio
    async def test_generate_maps_response(self):
        client = Mock()
        client.create_message = AsyncMock(
            return_value=AnthropicResponse(
                content=[
                    TextBlock(text="Listing "),
                    TextBlock(text="now."),
                    ToolUseBlock(id="toolu_1", name="list_directory", input={"path": "/tmp"}),
                ],
                stop_reason="tool_use",
                usage=LLMUsage(input_tokens=120, output_tokens=30),
                model="claude-3-5-sonnet-20241022",
            )
        )
        gateway = AnthropicModelGateway(client)

        response = await gateway.generate(
            [UserMessage(content="list /tmp")],
            [ToolDescriptor(name="list_directory")],
            "/tmp",
        )

        assert response.text == "Listing now."
        assert response.has_tool_calls
        assert response.tool_calls[0].id == "toolu_1"
        assert response.tool_calls[0].arguments == {"path": "/tmp"}
        assert response.stop_reason == "tool_use"

        kwargs = client.create_message.call_args.kwargs
        assert kwargs["messages"][0].content == "list /tmp"
        assert "Working Directory: /tmp" in kwargs["system_prompt"]
        assert [tool.name for tool in kwargs["tools"]] == ["list_directory"]

    @pytest.mark.asyncio
    async def test_generate_propagates_gateway_errors(self):
        client = Mock()
        client.create_message = AsyncMock(side_effect=GatewayError("Anthropic API error: overloaded", status_code=529))
        gateway = AnthropicModelGateway(client)

        with pytest.raises(GatewayError):
            await gateway.generate([UserMessage(content="hi")], [], "/tmp")


class TestAnthropicClient:
    """Tests for the low-level client."""

    def test_requires_api_key(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError):
                AnthropicClient()

    @pytest.mark.asyncio
    async def test_retries_then_raises_gateway_error(self):
        client = make_client(max_retries=2, retry_delay=0.0)
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        call = AsyncMock(side_effect=APIError("connection reset", request, body=None))

        with pytest.raises(GatewayError):
            await client._request_with_retries(call)

        assert call.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_recovers(self):
        client = make_client(max_retries=3, retry_delay=0.0)
        call = AsyncMock(side_effect=[RuntimeError("flaky"), "ok"])

        assert await client._request_with_retries(call) == "ok"
        assert call.await_count == 2


class TestConversationTruncation:
    """Tests for conversation truncation functionality."""

    def test_truncate_conversation_within_limit(self):
        """Test that conversations within limits are not truncated."""
        client = make_client(max_conversation_tokens=10000, token_headroom=1000)
        messages = [
            AnthropicMessage(role="user", content="Message 1"),
            AnthropicMessage(role="assistant", content="Response 1"),
            AnthropicMessage(role="user", content="Message 2"),
        ]

        assert client.truncate_conversation(messages, "System prompt") == messages

    def test_truncate_conversation_drops_oldest(self):
        """Test that the oldest messages are dropped and the result starts with a user turn."""
        client = make_client(max_conversation_tokens=1500, token_headroom=1000)
        messages = [
            AnthropicMessage(role="user", content="Message 1"),
            AnthropicMessage(role="assistant", content="Response 1"),
            AnthropicMessage(role="user", content="Message 2"),
            AnthropicMessage(role="assistant", content="Response 2"),
            AnthropicMessage(role="user", content="Message 3"),
        ]

        # 400 tokens remain after the system prompt: four messages fit, then the
        # leading assistant turn is dropped
        result = client.truncate_conversation(messages, "System prompt")

        assert result == messages[2:]

    def test_truncate_never_starts_with_tool_results(self):
        client = make_client(max_conversation_tokens=1400, token_headroom=1000)
        messages = [
            AnthropicMessage(role="user", content="Read a"),
            AnthropicMessage(role="assistant", content=[ToolUseBlock(id="c1", name="read_file", input={})]),
            AnthropicMessage(role="user", content=[ToolResultBlock(tool_use_id="c1", content="A")]),
            AnthropicMessage(role="assistant", content="A says hello"),
            AnthropicMessage(role="user", content="Thanks"),
        ]

        result = client.truncate_conversation(messages, "System prompt")

        assert result == messages[-1:]
