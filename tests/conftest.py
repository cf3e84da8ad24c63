"""Test fixtures and configuration."""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from simplified_mcp_server.api_client import APIResponse
from simplified_mcp_server.config import Config


@pytest.fixture(scope="session", autouse=True)
def test_environment():
    """Set up test environment."""
    # Ensure we're in the right directory
    original_cwd = os.getcwd()
    repo_root = Path(__file__).parent.parent
    os.chdir(repo_root)

    yield

    # Cleanup
    os.chdir(original_cwd)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_env_vars() -> Dict[str, str]:
    """Mock environment variables for testing."""
    return {
        "SIMPLIFIED_API_TOKEN": "test_api_token",
        "SIMPLIFIED_API_BASE_URL": "https://api.test.simplified.com",
        "LOG_LEVEL": "debug",
    }


@pytest.fixture
def config(mock_env_vars) -> Config:
    """Workflow-enabled configuration built from the mock environment."""
    env = {**mock_env_vars, "WORKFLOWS_ENABLED": "true"}
    return Config.from_env(environ=env)


def _api_response(data: Any, status: int = 200) -> APIResponse:
    return APIResponse(status=status, status_text="OK", data=data)


@pytest.fixture
def make_response():
    """Factory for successful API responses."""
    return _api_response


@pytest.fixture
def mock_api_client() -> MagicMock:
    """API client double with async get/post methods."""
    client = MagicMock()
    client.get = AsyncMock()
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def competitor_workflow_raw() -> Dict[str, Any]:
    """Workflow entry as returned by the workflow list endpoint."""
    return {
        "id": 561,
        "title": "MCP workflow check competitor",
        "description": "Checks a competitor page and summarises changes",
        "inputs": {
            "type": "object",
            "properties": {
                "competitor_page": {
                    "type": "string",
                    "description": "URL of the competitor page",
                }
            },
            "required": ["competitor_page"],
        },
    }


def _status_payload(
    status: str = "RUNNING",
    workflow_id: str = "wf-instance",
    output: Optional[Dict[str, Any]] = None,
    start_time: int = 1_700_000_000_000,
    end_time: Optional[int] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "create_time": start_time - 100,
        "update_time": start_time + 500,
        "start_time": start_time,
        "status": status,
        "workflow_id": workflow_id,
        "input": {"competitor_page": "https://example.com"},
        "output": output if output is not None else {},
    }
    if end_time is not None:
        payload["end_time"] = end_time
    return payload


@pytest.fixture
def make_status():
    """Factory for workflow status payloads."""
    return _status_payload
