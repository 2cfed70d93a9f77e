"""Interactive entry point: wires providers, storage and the turn engine into a REPL."""

import asyncio
import os
import signal
import sys
import threading
from collections.abc import Callable

from pydantic import ValidationError

from codepilot import __version__
from codepilot.cli.interface import CLIInterface
from codepilot.clients.anthropic import AnthropicClient, AnthropicConfig
from codepilot.config import Settings
from codepilot.exceptions import ConfigurationError
from codepilot.graphs.conversation import TurnEngine
from codepilot.services.conversation import ConversationService
from codepilot.services.conversation_store import ConversationStore
from codepilot.services.llm import AnthropicModelGateway
from codepilot.storage.sqlite import SqliteConversationRepository
from codepilot.tools.mcp import McpToolProvider
from codepilot.tools.registry import ToolRegistry
from codepilot.tools.web_search import WebSearchProvider
from codepilot.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def open_store(settings: Settings, cli: CLIInterface) -> ConversationStore:
    """Create the conversation store, attaching the durable tier when it answers."""
    db_path = settings.resolved_database_path()
    if db_path is None:
        cli.display_status(False, "Database not configured (using in-memory storage only)")
        return ConversationStore()

    repository = SqliteConversationRepository(db_path)
    if await repository.ping():
        cli.display_status(True, f"Database connected ({db_path})")
        return ConversationStore(durable=repository)

    await repository.close()
    cli.display_status(False, "Database not available (using in-memory storage only)")
    return ConversationStore()


async def connect_providers(settings: Settings, registry: ToolRegistry, cli: CLIInterface) -> None:
    """Connect every configured tool provider, reporting each outcome.

    A provider that fails to connect is reported and skipped; startup continues.
    """
    cli.display_info("Connecting to tool providers...")

    filesystem_command, *filesystem_args = settings.filesystem_server
    filesystem = McpToolProvider(
        "filesystem",
        filesystem_command,
        [*filesystem_args, os.getcwd()],
        shutdown_timeout=settings.provider_disconnect_timeout,
    )
    await _connect(registry, filesystem, cli, "Filesystem server")

    if settings.github_token:
        github_command, *github_args = settings.github_server
        github = McpToolProvider(
            "github",
            github_command,
            github_args,
            env={"GITHUB_TOKEN": settings.github_token, "GITHUB_PERSONAL_ACCESS_TOKEN": settings.github_token},
            shutdown_timeout=settings.provider_disconnect_timeout,
        )
        await _connect(registry, github, cli, "GitHub server")
    else:
        cli.display_status(False, "GitHub server (no token)")

    web_search = WebSearchProvider(settings.tavily_api_key)
    if web_search.is_configured:
        await _connect(registry, web_search, cli, "Web search (Tavily)")
    else:
        cli.display_status(False, "Web search (set TAVILY_API_KEY to enable)")


async def _connect(registry: ToolRegistry, provider, cli: CLIInterface, label: str) -> None:
    try:
        tools = await registry.connect_provider(provider)
    except Exception as e:
        logger.warning(f"Failed to connect provider {provider.name}: {e}", exc_info=True)
        await provider.disconnect()
        cli.display_status(False, f"{label}: {e}")
        return
    cli.display_status(True, f"{label} ({len(tools)} tools)")


def build_engine(settings: Settings, registry: ToolRegistry, store: ConversationStore) -> TurnEngine:
    """Create the turn engine backed by the Anthropic gateway.

    Raises:
        ConfigurationError: If no Anthropic API key is configured
    """
    client = AnthropicClient(
        api_key=settings.anthropic_api_key or None,
        config=AnthropicConfig(
            model=settings.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        ),
    )
    return TurnEngine(AnthropicModelGateway(client), registry, store, max_tool_rounds=settings.max_tool_rounds)


def _prompt_in_background(prompt: Callable[[], str]) -> asyncio.Future[str]:
    """Run a blocking prompt on a daemon thread.

    The event loop stays responsive to signals while waiting for input, and an
    abandoned prompt never keeps the process alive at exit.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def deliver(result: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def worker() -> None:
        try:
            result = prompt()
        except BaseException as e:
            loop.call_soon_threadsafe(deliver, None, e)
        else:
            loop.call_soon_threadsafe(deliver, result, None)

    threading.Thread(target=worker, name="codepilot-prompt", daemon=True).start()
    return future


async def run_repl(
    service: ConversationService, registry: ToolRegistry, cli: CLIInterface, conversation_id: str
) -> None:
    """Read user input until /exit, running one turn per message."""
    working_directory = os.getcwd()

    while True:
        try:
            user_input = await _prompt_in_background(cli.prompt_user)
        except (KeyboardInterrupt, EOFError):
            logger.info("Input closed by user")
            break

        command = user_input.lower()
        if command == "/exit":
            cli.display_info("Goodbye!")
            break
        if command == "/help":
            cli.display_help()
            continue
        if command == "/tools":
            cli.display_tools(await registry.list_all_tools())
            continue

        try:
            with cli.thinking():
                result = await service.process_message(conversation_id, user_input, working_directory)
        except Exception as e:
            logger.error(f"Turn failed for conversation {conversation_id}: {e}", exc_info=True)
            cli.display_error(f"An error occurred: {e}")
            continue

        cli.display_turn([message for message in result.new_messages if message.role != "user"])


def _install_signal_handlers(task: asyncio.Task, cli: CLIInterface) -> None:
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        cli.display_info(f"Received {sig.name}, shutting down gracefully...")
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt
            pass


async def main() -> int:
    """Run the interactive assistant.

    Returns:
        Process exit status
    """
    cli = CLIInterface()

    try:
        settings = Settings()
    except ValidationError as e:
        cli.display_error(f"Invalid configuration:\n{e}")
        return 1

    setup_logging(settings.log_config())
    logger.info(f"Starting codepilot {__version__}")

    cli.display_welcome()

    task = asyncio.current_task()
    if task is not None:
        _install_signal_handlers(task, cli)

    registry = ToolRegistry(disconnect_timeout=settings.provider_disconnect_timeout)
    store: ConversationStore | None = None
    try:
        store = await open_store(settings, cli)
        await connect_providers(settings, registry, cli)
        engine = build_engine(settings, registry, store)

        tools = await registry.list_all_tools()
        providers = registry.connected_providers()
        cli.display_info(f"Ready with {len(tools)} tools from {len(providers)} providers")

        conversation = await store.create_conversation(owner_id=settings.owner_id)
        service = ConversationService(engine, store, history_limit=settings.history_limit)

        await run_repl(service, registry, cli, conversation.id)
        return 0

    except asyncio.CancelledError:
        logger.info("Shutdown requested")
        return 0
    except ConfigurationError as e:
        cli.display_error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        cli.display_error(f"Fatal error: {e}")
        return 1
    finally:
        cli.display_info("Cleaning up...")
        await registry.disconnect_all()
        if store is not None:
            await store.close()
        logger.info("Shutdown complete")


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
