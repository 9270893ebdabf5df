"""Custom exceptions for Stripe Chat."""


class StripeChatError(Exception):
    """Base exception for Stripe Chat."""

    pass


class ConfigurationError(StripeChatError):
    """Configuration-related errors (missing credentials, bad settings)."""

    pass


class LLMError(StripeChatError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """Model API errors (non-success status, unreachable endpoint)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ToolError(StripeChatError):
    """Tool-related errors."""

    pass


class MCPError(ToolError):
    """MCP server call failed."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class ConversationError(StripeChatError):
    """Conversation invariant violated."""

    pass
