"""Error types and MCP error translation for the Simplified MCP Server.

Every failure that crosses a component boundary is an ``AppError`` carrying
an ``ErrorType``. The helpers in this module turn those errors into the
JSON-RPC style envelopes (``{code, message, data}``) that are rendered back
to MCP clients, and decide whether an error is worth retrying.
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    """Broad error categories used across the server."""

    CONFIG_ERROR = "CONFIG_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    API_ERROR = "API_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TOOL_ERROR = "TOOL_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


class MCPErrorCodes:
    """JSON-RPC 2.0 error codes plus the server-defined range."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    SERVER_ERROR = -32000
    AUTHENTICATION_ERROR = -32001
    API_ERROR = -32002
    VALIDATION_ERROR = -32003
    NETWORK_ERROR = -32004
    TOOL_ERROR = -32005
    RATE_LIMIT_ERROR = -32006
    TIMEOUT_ERROR = -32007


class AppError(Exception):
    """Application error with a category, optional HTTP status and details."""

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.type = error_type
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.status = status

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.type.value}, {self.message!r})"


class ConfigurationError(AppError):
    """Raised when the server configuration is missing or invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorType.CONFIG_ERROR, message, details)


class ToolNotFoundError(AppError):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, tool_name: str):
        super().__init__(
            ErrorType.VALIDATION_ERROR,
            f"Tool '{tool_name}' not found",
            {"toolName": tool_name},
        )
        self.tool_name = tool_name


class MissingParameterError(AppError):
    """Raised when a required tool parameter was not supplied."""

    def __init__(self, parameter: str, tool_name: Optional[str] = None):
        super().__init__(
            ErrorType.VALIDATION_ERROR,
            f"Missing required parameter: {parameter}",
            {"parameter": parameter, "toolName": tool_name},
        )
        self.parameter = parameter


class StatusCheckError(AppError):
    """Raised when a workflow status poll fails or returns a malformed payload."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(ErrorType.API_ERROR, message, details, status)


class WorkflowTimeoutError(AppError):
    """Raised when polling exceeds the execution timeout."""

    def __init__(self, timeout_ms: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorType.API_ERROR,
            f"Workflow execution timeout after {timeout_ms}ms",
            {**(details or {}), "timeout": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class WorkflowCancelledError(AppError):
    """Raised when an active execution is cancelled while polling."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorType.API_ERROR, "Workflow execution was cancelled", details
        )


SENSITIVE_KEY_PATTERN = re.compile(r"password|token|apikey|secret|key|auth", re.I)


def sanitize_parameters(parameters: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a shallow copy of ``parameters`` with sensitive values redacted."""
    if not isinstance(parameters, dict):
        return parameters

    sanitized = dict(parameters)
    for key in sanitized:
        if SENSITIVE_KEY_PATTERN.search(str(key)):
            sanitized[key] = "[REDACTED]"
    return sanitized


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_timeout_error(error: AppError) -> bool:
    if isinstance(error, WorkflowTimeoutError) or error.status == 408:
        return True
    return "timeout" in error.message.lower() or "timed out" in error.message.lower()


def is_rate_limit_error(error: AppError) -> bool:
    return error.status == 429 or "rate limit" in error.message.lower()


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether repeating the failed operation could succeed."""
    if isinstance(error, AppError):
        if error.type == ErrorType.NETWORK_ERROR:
            return True
        if error.type == ErrorType.API_ERROR:
            if error.status is None:
                return is_timeout_error(error)
            return error.status >= 500 or error.status in (408, 429)
        return False

    message = str(error).lower()
    return any(
        marker in message
        for marker in ("timeout", "network", "connection", "temporary")
    )


def get_error_severity(error: BaseException) -> str:
    """Map an error to one of ``critical``, ``error``, ``warning`` or ``info``."""
    if not isinstance(error, AppError):
        return "error"
    if error.type in (ErrorType.CONFIG_ERROR, ErrorType.AUTH_ERROR):
        return "critical"
    if error.type == ErrorType.VALIDATION_ERROR:
        return "warning"
    if error.type == ErrorType.NETWORK_ERROR:
        return "warning"
    if error.type == ErrorType.API_ERROR and error.status and error.status < 500:
        return "warning"
    return "error"


def get_user_friendly_message(error: BaseException) -> str:
    if not isinstance(error, AppError):
        return f"An unexpected error occurred: {error}"

    if error.type == ErrorType.AUTH_ERROR:
        if error.status == 401:
            return (
                "Authentication failed. Please check your API token and ensure "
                "it is valid and not expired."
            )
        if error.status == 403:
            return (
                "Access forbidden. Your API token does not have sufficient "
                "permissions for this operation."
            )
        return f"Authentication error: {error.message}"
    if error.type == ErrorType.NETWORK_ERROR:
        if is_timeout_error(error):
            return (
                "Request timed out. The API did not respond within the expected "
                "time. Please try again."
            )
        return f"Network error: {error.message}"
    if error.type == ErrorType.VALIDATION_ERROR:
        return f"Invalid input: {error.message}"
    if error.type == ErrorType.CONFIG_ERROR:
        return f"Configuration error: {error.message}"
    if error.type == ErrorType.TOOL_ERROR:
        return f"Tool execution failed: {error.message}"
    return error.message


def translate_to_mcp_error(
    error: BaseException, context: Optional[Union[str, Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Translate any exception into an MCP ``{code, message, data}`` envelope."""
    if not isinstance(error, AppError):
        return {
            "code": MCPErrorCodes.INTERNAL_ERROR,
            "message": f"Internal error: {error}",
            "data": {"context": context, "originalError": str(error)},
        }

    context_data = {"context": context} if isinstance(context, str) else dict(context or {})
    base_data: Dict[str, Any] = {
        **context_data,
        "errorType": error.type.value,
        "originalMessage": error.message,
        "timestamp": _now_iso(),
    }
    if error.details:
        base_data["details"] = error.details

    if error.type == ErrorType.AUTH_ERROR:
        return {
            "code": MCPErrorCodes.AUTHENTICATION_ERROR,
            "message": get_user_friendly_message(error),
            "data": {**base_data, "status": error.status, "authenticationRequired": True},
        }
    if error.type == ErrorType.VALIDATION_ERROR:
        return {
            "code": MCPErrorCodes.VALIDATION_ERROR,
            "message": f"Parameter validation failed: {error.message}",
            "data": {**base_data, "status": error.status},
        }
    if error.type == ErrorType.NETWORK_ERROR:
        code = (
            MCPErrorCodes.TIMEOUT_ERROR
            if is_timeout_error(error)
            else MCPErrorCodes.NETWORK_ERROR
        )
        return {
            "code": code,
            "message": get_user_friendly_message(error),
            "data": {**base_data, "retryable": True, "networkIssue": True},
        }
    if error.type == ErrorType.API_ERROR:
        if is_rate_limit_error(error):
            return {
                "code": MCPErrorCodes.RATE_LIMIT_ERROR,
                "message": f"Rate limit exceeded: {error.message}",
                "data": {
                    **base_data,
                    "status": error.status,
                    "retryable": True,
                    "retryAfter": error.details.get("retryAfter"),
                },
            }
        return {
            "code": MCPErrorCodes.API_ERROR,
            "message": f"API request failed: {error.message}",
            "data": {
                **base_data,
                "status": error.status,
                "retryable": is_retryable_error(error),
            },
        }
    if error.type == ErrorType.TOOL_ERROR:
        return {
            "code": MCPErrorCodes.TOOL_ERROR,
            "message": f"Tool execution failed: {error.message}",
            "data": {**base_data, "toolName": error.details.get("toolName")},
        }
    if error.type == ErrorType.CONFIG_ERROR:
        return {
            "code": MCPErrorCodes.INVALID_PARAMS,
            "message": f"Configuration error: {error.message}",
            "data": {**base_data, "configurationRequired": True},
        }
    return {
        "code": MCPErrorCodes.SERVER_ERROR,
        "message": f"Server error: {error.message}",
        "data": base_data,
    }


def create_tool_error_response(
    error: BaseException,
    tool_name: str,
    parameters: Optional[Dict[str, Any]] = None,
    context: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the MCP error envelope for a failed tool call."""
    mcp_error = translate_to_mcp_error(
        error,
        {
            "operation": context or "tool-execution",
            "toolName": tool_name,
            "toolParams": sanitize_parameters(parameters),
        },
    )
    mcp_error["data"]["toolName"] = tool_name
    return mcp_error


def log_error(
    error: BaseException,
    context: str,
    log: Optional[logging.Logger] = None,
) -> None:
    """Log an error at a level matching its severity."""
    log = log or logger
    severity = get_error_severity(error)
    message = f"[{context}] {error}"
    if severity in ("critical", "error"):
        log.error(message)
    elif severity == "warning":
        log.warning(message)
    else:
        log.info(message)
