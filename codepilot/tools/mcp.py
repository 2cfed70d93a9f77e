"""Tool provider backed by an MCP server over stdio."""

import asyncio
import os
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from codepilot.exceptions import ProviderNotConnectedError, ToolExecutionError
from codepilot.models.llm import ToolDescriptor
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


class McpToolProvider:
    """Connects to one MCP server process and exposes its tools.

    The stdio transport and client session are opened and closed by a single
    runner task, since their context managers must exit in the task that
    entered them. ``disconnect`` signals that task and waits for it with a
    timeout, so it can be called from anywhere.
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        shutdown_timeout: float = 1.0,
    ):
        """Initialize the provider.

        Args:
            name: Provider name used in the registry
            command: Executable that starts the MCP server
            args: Arguments for the server command
            env: Extra environment variables for the server process
            shutdown_timeout: Seconds to wait for the server to close before cancelling it
        """
        self.name = name
        self.command = command
        self.args = args or []
        self.env = env
        self.shutdown_timeout = shutdown_timeout

        self._session: ClientSession | None = None
        self._runner: asyncio.Task[None] | None = None
        self._closing: asyncio.Event | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._runner is not None and not self._runner.done()

    async def connect(self) -> None:
        """Start the server process and complete the MCP handshake."""
        if self._runner is not None:
            return

        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._runner = asyncio.create_task(self._run(ready), name=f"mcp-{self.name}")

        try:
            await ready
        except BaseException:
            if not self._runner.done():
                self._runner.cancel()
            self._runner = None
            self._closing = None
            raise

        logger.info(f"Connected to MCP server {self.name} ({self.command} {' '.join(self.args)})")

    async def disconnect(self) -> None:
        """Close the session; safe to call repeatedly and never raises."""
        runner, closing = self._runner, self._closing
        self._runner = None
        self._closing = None
        if runner is None or closing is None:
            return

        closing.set()
        done, _ = await asyncio.wait({runner}, timeout=self.shutdown_timeout)
        if not done:
            logger.warning(f"MCP server {self.name} did not close in time, cancelling")
            runner.cancel()
        logger.info(f"Disconnected from MCP server {self.name}")

    async def list_tools(self) -> list[ToolDescriptor]:
        """List the tools currently advertised by the server."""
        session = self._require_session()
        response = await session.list_tools()
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {},
            )
            for tool in response.tools
        ]

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Call a tool on the server.

        Returns:
            Structured content when the server provides it, otherwise the text
            of all text content items

        Raises:
            ToolExecutionError: If the server flags the result as an error
        """
        session = self._require_session()
        result = await session.call_tool(tool_name, arguments)

        text = "\n".join(item.text for item in result.content if getattr(item, "type", None) == "text")
        if result.isError:
            raise ToolExecutionError(tool_name, text or "unknown error")

        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            return structured
        if text:
            return text
        return [item.model_dump(mode="json") for item in result.content]

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ProviderNotConnectedError(self.name)
        return self._session

    def _server_parameters(self) -> StdioServerParameters:
        env = {**os.environ, **self.env} if self.env else None
        return StdioServerParameters(command=self.command, args=self.args, env=env)

    async def _run(self, ready: asyncio.Future[None]) -> None:
        closing = self._closing
        try:
            # Server stderr would interleave with the prompt
            with open(os.devnull, "w") as errlog:
                async with stdio_client(self._server_parameters(), errlog=errlog) as (read, write):
                    async with ClientSession(read, write) as session:
                        await session.initialize()
                        self._session = session
                        ready.set_result(None)
                        if closing is not None:
                            await closing.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning(f"MCP server {self.name} connection closed with error: {e}")
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(ConnectionError(f"MCP server {self.name} closed during startup"))
