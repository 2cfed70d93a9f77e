"""Tests for the MCP stdio tool provider."""

import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from codepilot.exceptions import ProviderNotConnectedError, ToolExecutionError
from codepilot.tools.base import ToolFailure, ToolSuccess
from codepilot.tools.mcp import McpToolProvider
from codepilot.tools.registry import ToolRegistry


def text_item(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def connected_provider(session) -> McpToolProvider:
    """Provider with an injected client session, bypassing the server process."""
    provider = McpToolProvider("filesystem", "npx")
    provider._session = session
    return provider


class TestMcpToolProvider:
    """Tests for McpToolProvider."""

    @pytest.mark.asyncio
    async def test_disconnect_without_connect(self):
        provider = McpToolProvider("filesystem", "npx", ["-y", "@modelcontextprotocol/server-filesystem"])

        await provider.disconnect()
        await provider.disconnect()

        assert provider.is_connected is False

    @pytest.mark.asyncio
    async def test_connect_failure_leaves_provider_disconnected(self, tmp_path):
        provider = McpToolProvider("broken", str(tmp_path / "no-such-server"), shutdown_timeout=0.1)

        with pytest.raises(Exception):
            await provider.connect()

        assert provider.is_connected is False
        await provider.disconnect()

    @pytest.mark.asyncio
    async def test_requires_session(self):
        provider = McpToolProvider("filesystem", "npx")

        with pytest.raises(ProviderNotConnectedError):
            await provider.list_tools()
        with pytest.raises(ProviderNotConnectedError):
            await provider.execute("read_file", {})

    @pytest.mark.asyncio
    async def test_list_tools(self):
        session = SimpleNamespace(
            list_tools=AsyncMock(
                return_value=SimpleNamespace(
                    tools=[
                        SimpleNamespace(
                            name="read_file",
                            description="Read a file",
                            inputSchema={"type": "object", "properties": {"path": {"type": "string"}}},
                        ),
                        SimpleNamespace(name="list_allowed_directories", description=None, inputSchema=None),
                    ]
                )
            )
        )
        provider = connected_provider(session)

        tools = await provider.list_tools()

        assert [tool.name for tool in tools] == ["read_file", "list_allowed_directories"]
        assert tools[0].input_schema["properties"]["path"] == {"type": "string"}
        assert tools[1].description == ""
        assert tools[1].input_schema == {}

    @pytest.mark.asyncio
    async def test_execute_returns_text(self):
        session = SimpleNamespace(
            call_tool=AsyncMock(
                return_value=SimpleNamespace(
                    content=[text_item("[FILE] a.txt"), text_item("[DIR] src")],
                    isError=False,
                    structuredContent=None,
                )
            )
        )
        provider = connected_provider(session)

        output = await provider.execute("list_directory", {"path": "/tmp"})

        assert output == "[FILE] a.txt\n[DIR] src"
        session.call_tool.assert_awaited_once_with("list_directory", {"path": "/tmp"})

    @pytest.mark.asyncio
    async def test_execute_prefers_structured_content(self):
        session = SimpleNamespace(
            call_tool=AsyncMock(
                return_value=SimpleNamespace(
                    content=[text_item("ignored")],
                    isError=False,
                    structuredContent={"entries": ["a.txt"]},
                )
            )
        )
        provider = connected_provider(session)

        assert await provider.execute("list_directory", {"path": "/tmp"}) == {"entries": ["a.txt"]}

    @pytest.mark.asyncio
    async def test_execute_error_result_raises(self):
        session = SimpleNamespace(
            call_tool=AsyncMock(
                return_value=SimpleNamespace(
                    content=[text_item("Access denied - path outside allowed directories")],
                    isError=True,
                    structuredContent=None,
                )
            )
        )
        provider = connected_provider(session)

        with pytest.raises(ToolExecutionError, match="Access denied"):
            await provider.execute("read_file", {"path": "/etc/shadow"})

    def test_env_is_merged_with_process_environment(self, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/bin")
        provider = McpToolProvider("github", "npx", env={"GITHUB_TOKEN": "ghp_test"})

        params = provider._server_parameters()

        assert params.env["GITHUB_TOKEN"] == "ghp_test"
        assert params.env["PATH"] == "/usr/bin"


ECHO_SERVER = '''
from mcp.server.fastmcp import FastMCP

server = FastMCP("echo")


@server.tool(structured_output=False)
def echo(text: str):
    """Echo the text back."""
    return text


@server.tool(structured_output=False)
def boom():
    """Always fails."""
    raise RuntimeError("boom went the tool")


if __name__ == "__main__":
    server.run()
'''


@pytest.fixture
def echo_server(tmp_path):
    script = tmp_path / "echo_server.py"
    script.write_text(ECHO_SERVER)
    return McpToolProvider("echo-server", sys.executable, [str(script)], shutdown_timeout=5.0)


class TestMcpStdioServer:
    """Tests against a real MCP server process."""

    @pytest.mark.asyncio
    async def test_connect_list_execute_disconnect(self, echo_server):
        registry = ToolRegistry(disconnect_timeout=5.0)

        tools = await registry.connect_provider(echo_server)
        try:
            assert echo_server.is_connected
            assert sorted(tool.name for tool in tools) == ["boom", "echo"]
            echo_tool = next(tool for tool in tools if tool.name == "echo")
            assert echo_tool.input_schema["properties"]["text"]["type"] == "string"

            success = await registry.dispatch("echo", {"text": "hello"})
            failure = await registry.dispatch("boom", {})
        finally:
            await echo_server.disconnect()

        assert success == ToolSuccess(tool_name="echo", output="hello", provider="echo-server")
        assert isinstance(failure, ToolFailure)
        assert "boom went the tool" in failure.error

        assert echo_server.is_connected is False
        await echo_server.disconnect()
        assert echo_server.is_connected is False
