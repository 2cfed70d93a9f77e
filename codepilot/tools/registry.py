"""Tool registry tracking external tool providers."""

import asyncio
from typing import Any

from codepilot.exceptions import ProviderNotConnectedError, ToolNotFoundError
from codepilot.models.llm import ToolDescriptor
from codepilot.tools.base import ToolFailure, ToolOutcome, ToolProvider, ToolSuccess
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of tool providers and the tools they advertise.

    Providers are kept in registration order. Each provider's most recent tool
    listing is cached and used to resolve a tool name to the provider that
    executes it; when several connected providers advertise the same name,
    the first registered one wins.
    """

    def __init__(self, disconnect_timeout: float = 1.0):
        """Initialize an empty registry.

        Args:
            disconnect_timeout: Seconds to wait for each provider to acknowledge shutdown
        """
        self.disconnect_timeout = disconnect_timeout
        self._providers: dict[str, ToolProvider] = {}
        self._tool_cache: dict[str, list[ToolDescriptor]] = {}

    def register_provider(self, provider: ToolProvider) -> None:
        """Register a provider under its name."""
        if provider.name in self._providers:
            raise ValueError(f"Provider {provider.name} is already registered")
        self._providers[provider.name] = provider
        logger.info(f"Registered tool provider {provider.name}")

    async def connect_provider(self, provider: ToolProvider) -> list[ToolDescriptor]:
        """Connect a provider, register it and prime its tool cache.

        Raises:
            Exception: Whatever the provider raised while connecting; nothing is registered then
        """
        await provider.connect()
        self.register_provider(provider)
        return await self._list_provider_tools(provider)

    def get_provider(self, name: str) -> ToolProvider | None:
        """Get a registered provider by name."""
        return self._providers.get(name)

    def connected_providers(self) -> list[ToolProvider]:
        """Providers with a live connection, in registration order."""
        return [provider for provider in self._providers.values() if provider.is_connected]

    async def list_all_tools(self) -> list[ToolDescriptor]:
        """Aggregate the current tool list of every connected provider.

        Each provider is queried on every call so that provider-side changes are
        picked up immediately. A provider whose listing fails contributes no
        tools. Duplicate names are reported once, from the first provider.
        """
        tools: list[ToolDescriptor] = []
        seen: set[str] = set()

        for provider in self.connected_providers():
            for tool in await self._list_provider_tools(provider):
                if tool.name in seen:
                    logger.debug(f"Tool {tool.name} from {provider.name} is shadowed by an earlier provider")
                    continue
                seen.add(tool.name)
                tools.append(tool)

        return tools

    def resolve_provider(self, tool_name: str) -> ToolProvider | None:
        """Find the provider whose cached tool list contains ``tool_name``.

        Connected providers are preferred, in registration order, so a dead
        provider never shadows a live one that advertises the same name. A
        disconnected owner is returned only when no connected one exists.
        """
        owners = [
            provider
            for provider_name, provider in self._providers.items()
            if any(tool.name == tool_name for tool in self._tool_cache.get(provider_name, []))
        ]
        for provider in owners:
            if provider.is_connected:
                return provider
        return owners[0] if owners else None

    async def dispatch(self, tool_name: str, arguments: dict[str, Any]) -> ToolOutcome:
        """Execute a tool on the provider that owns it.

        Args:
            tool_name: Name of the requested tool
            arguments: Arguments supplied by the model

        Returns:
            ToolSuccess with the provider's output, or ToolFailure describing why
            the call could not be resolved or why the provider failed
        """
        provider = self.resolve_provider(tool_name)
        if provider is None:
            error = ToolNotFoundError(tool_name)
            logger.warning(str(error))
            return ToolFailure(tool_name=tool_name, error=str(error))

        if not provider.is_connected:
            error = ProviderNotConnectedError(provider.name)
            logger.warning(f"Cannot dispatch {tool_name}: {error}")
            return ToolFailure(tool_name=tool_name, error=str(error), provider=provider.name)

        logger.debug(f"Dispatching {tool_name} to {provider.name} with {arguments}")
        try:
            output = await provider.execute(tool_name, arguments)
        except Exception as e:
            logger.warning(f"Tool {tool_name} failed on {provider.name}: {e}")
            return ToolFailure(tool_name=tool_name, error=str(e) or type(e).__name__, provider=provider.name)

        return ToolSuccess(tool_name=tool_name, output=output, provider=provider.name)

    async def disconnect_provider(self, name: str) -> None:
        """Disconnect one provider, abandoning it if it does not answer in time."""
        provider = self._providers.get(name)
        if provider is None:
            return

        try:
            await asyncio.wait_for(provider.disconnect(), timeout=self.disconnect_timeout)
        except TimeoutError:
            logger.warning(f"Provider {name} did not disconnect within {self.disconnect_timeout}s, abandoning it")
        except Exception as e:
            logger.warning(f"Error while disconnecting provider {name}: {e}")

    async def disconnect_all(self) -> None:
        """Tear down every connected provider concurrently.

        Each provider gets at most ``disconnect_timeout`` seconds, so total
        shutdown latency is bounded regardless of how many providers hang.
        """
        names = [provider.name for provider in self.connected_providers()]
        if not names:
            return

        logger.info(f"Disconnecting providers: {', '.join(names)}")
        await asyncio.gather(*(self.disconnect_provider(name) for name in names))

    async def _list_provider_tools(self, provider: ToolProvider) -> list[ToolDescriptor]:
        try:
            tools = await provider.list_tools()
        except Exception as e:
            logger.warning(f"Failed to list tools for provider {provider.name}: {e}")
            return []

        self._tool_cache[provider.name] = tools
        return tools
