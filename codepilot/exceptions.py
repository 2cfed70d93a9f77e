"""Exceptions raised by codepilot components."""


class CodePilotError(Exception):
    """Base exception for codepilot."""


class ConfigurationError(CodePilotError):
    """A component is missing required configuration."""


class GatewayError(CodePilotError):
    """The model backend failed to produce a response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(CodePilotError):
    """Base class for tool dispatch errors."""


class ToolNotFoundError(ToolError):
    """No connected provider advertises the requested tool."""

    def __init__(self, tool_name: str):
        super().__init__(f"No provider found for tool: {tool_name}")
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """A provider reported a failure while executing a tool."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ProviderNotConnectedError(ToolError):
    """The provider owning a tool has no live connection."""

    def __init__(self, provider_name: str):
        super().__init__(f"Provider {provider_name} not connected")
        self.provider_name = provider_name


class DurableStoreError(CodePilotError):
    """The durable conversation tier rejected an operation."""
