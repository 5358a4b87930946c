"""Exception types raised by the agent core."""

from typing import Optional


class AgentCoreError(Exception):
    """Base class for every error raised by this package."""


class AgentConfigError(AgentCoreError):
    """The agent configuration could not be read, parsed or persisted."""


class NotConnectedError(AgentCoreError):
    """A tool call was attempted on a connection that is not connected."""

    def __init__(self, server_name: str):
        super().__init__(f"Tool server '{server_name}' is not connected")
        self.server_name = server_name


class ToolNameError(AgentCoreError, ValueError):
    """A qualified tool name could not be split into server and tool."""


class UnknownServerError(AgentCoreError, KeyError):
    """No tool server with the given name is configured."""

    def __init__(self, server_name: str):
        super().__init__(server_name)
        self.server_name = server_name

    def __str__(self) -> str:
        return f"Unknown tool server: {self.server_name}"


class ContextItemError(AgentCoreError, ValueError):
    """A rule, reference or tool argument failed validation."""


class ProviderError(AgentCoreError):
    """A model provider could not be resolved, configured or created."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class EmbedderError(AgentCoreError):
    """Raised when the embedding model fails to load or encode."""
