"""Tests for the server wiring and command line entry point."""

import json
import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from mcp import types

from simplified_mcp_server import __version__
from simplified_mcp_server.config import Config
from simplified_mcp_server.errors import MCPErrorCodes
from simplified_mcp_server.main import (
    SimplifiedMCPServer,
    configure_logging,
    main,
    render_tool_documentation,
)
from simplified_mcp_server.workflow_discovery import WORKFLOWS_LIST_ENDPOINT

STATIC_TOOLS = ["get_social_media_accounts", "create_social_media_post", "check-workflow-status"]


@pytest.fixture
def disabled_config(mock_env_vars):
    return Config.from_env(environ=mock_env_vars)


def test_configure_logging_maps_warn():
    with patch("simplified_mcp_server.main.logging.basicConfig") as basic_config:
        configure_logging("warn")

    kwargs = basic_config.call_args.kwargs
    assert kwargs["level"] == logging.WARNING
    assert kwargs["force"] is True
    assert logging.getLogger("httpx").level == logging.WARNING


class TestSimplifiedMCPServer:
    @pytest.mark.asyncio
    async def test_initialize_registers_static_tools(self, disabled_config, mock_api_client):
        server = SimplifiedMCPServer(disabled_config, api_client=mock_api_client)

        await server.initialize()
        await server.initialize()

        assert server.registry.get_tool_names() == STATIC_TOOLS
        tools = server.list_tools()
        assert all(isinstance(t, types.Tool) for t in tools)
        assert tools[0].inputSchema["type"] == "object"
        mock_api_client.get.assert_not_awaited()

        await server.shutdown()
        mock_api_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_tool_returns_error_text(self, disabled_config, mock_api_client):
        server = SimplifiedMCPServer(disabled_config, api_client=mock_api_client)
        await server.initialize()

        response = await server.call_tool("no-such-tool", {"token": "abc"})

        assert response["isError"] is True
        envelope = json.loads(response["content"][0]["text"])
        assert envelope["code"] == MCPErrorCodes.VALIDATION_ERROR
        assert envelope["data"]["toolName"] == "no-such-tool"
        assert envelope["data"]["toolParams"] == {"token": "[REDACTED]"}

    @pytest.mark.asyncio
    async def test_static_tool_errors_are_logged_by_severity(
        self, disabled_config, mock_api_client, caplog
    ):
        server = SimplifiedMCPServer(disabled_config, api_client=mock_api_client)
        await server.initialize()

        with caplog.at_level(logging.INFO, logger="simplified_mcp_server.main"):
            await server.call_tool("no-such-tool", {})

        records = [r for r in caplog.records if "[tool:no-such-tool]" in r.getMessage()]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].name == "simplified_mcp_server.main"

    @pytest.mark.asyncio
    async def test_workflow_tool_errors_use_workflow_envelope(
        self, config, mock_api_client, make_response, competitor_workflow_raw
    ):
        mock_api_client.get.return_value = make_response(
            {"count": 1, "results": [competitor_workflow_raw]}
        )
        server = SimplifiedMCPServer(config, api_client=mock_api_client)
        await server.initialize()

        tool_name = "workflow-mcp-workflow-check-competitor"
        assert tool_name in server.registry.get_tool_names()
        mock_api_client.get.assert_any_await(WORKFLOWS_LIST_ENDPOINT)

        response = await server.call_tool(tool_name, {})

        assert response["isError"] is True
        envelope = json.loads(response["content"][0]["text"])
        assert envelope["data"]["isWorkflowError"] is True
        assert envelope["data"]["workflowErrorType"] == "VALIDATION_FAILED"
        mock_api_client.post.assert_not_awaited()

        await server.shutdown()
        assert server.registry.get_tool_names() == STATIC_TOOLS


def test_render_tool_documentation():
    docs = render_tool_documentation()
    assert "### check-workflow-status" in docs
    assert "## social-media" in docs


class TestCommandLine:
    def test_docs_flag(self):
        result = CliRunner().invoke(main, ["--docs"])

        assert result.exit_code == 0
        assert "# Simplified MCP Server Tools Documentation" in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_token_exits(self, monkeypatch):
        monkeypatch.delenv("SIMPLIFIED_API_TOKEN", raising=False)

        result = CliRunner().invoke(main, [])

        assert result.exit_code == 1

    def test_missing_config_file_exits(self, temp_dir):
        result = CliRunner().invoke(main, ["--config", str(temp_dir / "missing.yaml")])

        assert result.exit_code == 1
