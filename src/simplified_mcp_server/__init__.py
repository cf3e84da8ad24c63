"""Package initialization for simplified_mcp_server."""

__version__ = "1.0.0"
__author__ = "Simplified"
__description__ = "MCP server exposing the Simplified API and its workflows as tools"

from .api_client import SimplifiedAPIClient
from .config import Config
from .registry import ToolRegistry
from .workflow_manager import WorkflowToolManager

__all__ = [
    "Config",
    "SimplifiedAPIClient",
    "ToolRegistry",
    "WorkflowToolManager",
]
