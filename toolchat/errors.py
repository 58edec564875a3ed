"""Exception taxonomy for toolchat."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad config file, bad flag combination)."""


class TransportError(AgentError):
    """Raised when a model call cannot complete (network, auth, malformed payload)."""


class StreamProtocolError(TransportError):
    """Raised when streamed events arrive in an order the reconciler cannot accept."""


class ConversationError(AgentError):
    """Raised when an append would break the transcript shape."""


class ToolError(Exception):
    """Base class for tool-level failures. Never escapes the dispatch loop."""


class ToolNotFoundError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolExecutionError(ToolError):
    """Raised by tool executors to report a failure to the model."""
