"""Main entry point for the Simplified MCP Server."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from . import __version__
from .api_client import SimplifiedAPIClient
from .config import Config
from .errors import AppError, ConfigurationError, create_tool_error_response, log_error
from .models import text_response
from .registry import ToolRegistry
from .tools import get_static_tools
from .workflow_discovery import WorkflowDiscoveryService
from .workflow_errors import WorkflowErrorHandler
from .workflow_execution import WorkflowExecutionService
from .workflow_manager import WorkflowToolManager

logger = logging.getLogger(__name__)

SERVER_NAME = "simplified-mcp-server"


def configure_logging(log_level: str) -> None:
    """Send log records to stderr; stdout carries the MCP protocol."""
    level_name = log_level.upper()
    if level_name == "WARN":
        level_name = "WARNING"
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class SimplifiedMCPServer:
    """Wires the API client, tool registry and workflow services to MCP."""

    def __init__(self, config: Config, api_client: Optional[SimplifiedAPIClient] = None):
        self.config = config
        self.api_client = api_client or SimplifiedAPIClient.from_config(config)
        self.registry = ToolRegistry()
        self.error_handler = WorkflowErrorHandler(logger)
        self.discovery_service = WorkflowDiscoveryService(
            self.api_client, config, logger, self.error_handler
        )
        self.execution_service = WorkflowExecutionService(
            self.api_client, config.execution_config(), logger, self.error_handler
        )
        self.workflow_manager = WorkflowToolManager(
            config,
            self.registry,
            self.discovery_service,
            self.execution_service,
            logger=logger,
            error_handler=self.error_handler,
        )
        self.server: Server = Server(SERVER_NAME, version=__version__)
        self._initialized = False
        self._register_handlers()

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            return self.list_tools()

        @self.server.call_tool(validate_input=False)
        async def handle_call_tool(
            name: str, arguments: Optional[Dict[str, Any]]
        ) -> types.CallToolResult:
            response = await self.call_tool(name, arguments or {})
            return types.CallToolResult(
                content=[
                    types.TextContent(type="text", text=item["text"])
                    for item in response["content"]
                ],
                isError=response.get("isError", False),
            )

    async def initialize(self) -> None:
        """Register static tools and load workflow tools."""
        if self._initialized:
            return
        self._initialized = True

        for tool in get_static_tools():
            self.registry.register_tool(tool)
        logger.info(f"Registered {self.registry.get_tool_count()} static tools")

        for warning in self.config.validate_workflow_configuration():
            logger.warning(warning)

        await self.workflow_manager.initialize()
        logger.info(f"Server ready with {self.registry.get_tool_count()} tools")

    def list_tools(self) -> List[types.Tool]:
        return [
            types.Tool(
                name=entry["name"],
                description=entry["description"],
                inputSchema=entry["inputSchema"],
            )
            for entry in self.registry.get_available_tools()
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a tool and always return a text response."""
        try:
            return await self.registry.execute_tool(name, arguments, self.api_client)
        except Exception as e:
            if name in self.workflow_manager.get_workflow_tool_names():
                envelope = self.error_handler.create_workflow_tool_error_response(
                    e, name, arguments
                )
            else:
                if not isinstance(e, AppError):
                    logger.exception(f"Unexpected error while executing tool {name}")
                else:
                    log_error(e, f"tool:{name}", logger)
                envelope = create_tool_error_response(e, name, arguments)
            return text_response(json.dumps(envelope, indent=2, default=str), is_error=True)

    async def run(self) -> None:
        """Run the MCP server over stdio until the client disconnects."""
        await self.initialize()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        await self.workflow_manager.shutdown()
        await self.api_client.aclose()
        logger.info("Server shut down")


def load_config(config_path: Optional[str]) -> Config:
    if config_path:
        return Config.load(config_path)
    return Config.from_env()


def render_tool_documentation() -> str:
    registry = ToolRegistry()
    for tool in get_static_tools():
        registry.register_tool(tool)
    return registry.generate_documentation()


@click.command()
@click.option("--config", "-c", default=None, help="Optional YAML configuration file")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--docs", is_flag=True, help="Print tool documentation and exit")
@click.version_option(__version__)
def main(config: Optional[str], log_level: Optional[str], verbose: bool, docs: bool) -> None:
    """Start the Simplified MCP Server."""
    if docs:
        click.echo(render_tool_documentation())
        return

    try:
        server_config = load_config(config)
    except (ConfigurationError, FileNotFoundError) as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    if verbose:
        log_level = "debug"
    configure_logging(log_level or server_config.log_level)

    async def _main() -> None:
        server = SimplifiedMCPServer(server_config)
        await server.run()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
