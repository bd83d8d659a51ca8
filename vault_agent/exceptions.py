"""Custom exceptions for Vault Agent."""


class VaultAgentError(Exception):
    """Base exception for Vault Agent."""

    pass


class ConfigurationError(VaultAgentError):
    """Configuration-related errors."""

    pass


class OperationAbortedError(VaultAgentError):
    """A session was cancelled by its caller (stop button, abort event)."""

    def __init__(self, message: str = "Operation aborted"):
        super().__init__(message)


class LLMError(VaultAgentError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(VaultAgentError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by policy."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class VaultPathError(ToolError):
    """Path points outside the vault or is not a string."""

    def __init__(self, path: object, reason: str):
        super().__init__(reason)
        self.path = path
