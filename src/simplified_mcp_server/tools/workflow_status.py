"""Built-in tool for checking the status of a workflow run."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..errors import AppError, ErrorType
from ..models import ToolDefinition, WorkflowStatus, text_response
from ..workflow_execution import (
    STATUS_HEADERS,
    build_status_endpoint,
    parse_status_response,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = (502, 503, 504, 521, 522, 523, 524)
UUID_PATTERN = "^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"


def _iso(epoch_ms: Optional[float]) -> Optional[str]:
    if epoch_ms is None:
        return None
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc).isoformat()


def format_status(status: WorkflowStatus, raw_response: Any = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "workflowId": status.workflow_id,
        "workflowInstanceId": status.workflow_instance_id,
        "status": status.status.value,
        "createTime": _iso(status.create_time),
        "updateTime": _iso(status.update_time),
        "startTime": _iso(status.start_time),
    }
    if status.end_time is not None:
        result["endTime"] = _iso(status.end_time)
    if status.execution_duration is not None:
        result["executionDurationMs"] = status.execution_duration
    result["input"] = status.input
    result["output"] = status.output
    if status.error:
        result["error"] = status.error
    if raw_response is not None:
        result["rawResponse"] = raw_response
    return result


def _is_unavailable(error: AppError) -> bool:
    return error.type == ErrorType.NETWORK_ERROR or error.status in UNAVAILABLE_STATUSES


async def check_workflow_status(params: Dict[str, Any], api_client: Any) -> Dict[str, Any]:
    workflow_id = params["workflowId"]
    instance_id = params["workflow_id"]
    logger.info(f"Checking workflow status: workflowId={workflow_id}, workflow_id={instance_id}")

    try:
        response = await api_client.get(
            build_status_endpoint(workflow_id, instance_id), headers=dict(STATUS_HEADERS)
        )
        status = parse_status_response(response.data, instance_id)
    except AppError as e:
        logger.error(f"Workflow status check failed: {e.message}")
        if _is_unavailable(e):
            body: Dict[str, Any] = {
                "success": False,
                "workflowId": workflow_id,
                "workflowInstanceId": instance_id,
                "error": {
                    "type": "API_UNAVAILABLE",
                    "message": "Workflow status checking API is not available",
                    "details": {
                        "reason": "The status checking endpoint is not accessible "
                        "or the service is down",
                        "suggestion": "Please try again later or check if the "
                        "workflow service is running",
                    },
                },
            }
        else:
            error_body: Dict[str, Any] = {"type": e.type.value, "message": e.message}
            if e.status:
                error_body["status"] = e.status
            body = {"success": False, "error": error_body}
        return text_response(json.dumps(body, indent=2, default=str), is_error=True)

    logger.info(f"Workflow status check completed: {status.status.value}")
    raw = response.data if params.get("includeRawResponse") else None
    return text_response(json.dumps(format_status(status, raw), indent=2, default=str))


def create_workflow_status_tool() -> ToolDefinition:
    return ToolDefinition(
        name="check-workflow-status",
        description="Check the execution status of a running workflow via API calls",
        category="workflow",
        version="1.0.0",
        input_schema={
            "type": "object",
            "properties": {
                "workflowId": {
                    "type": "string",
                    "description": 'The original workflow ID used to start the execution (e.g., "2724")',
                    "minLength": 1,
                    "maxLength": 100,
                    "pattern": "^[a-zA-Z0-9_-]+$",
                },
                "workflow_id": {
                    "type": "string",
                    "description": "The workflow instance ID (UUID) returned from the "
                    "execution start response",
                    "pattern": UUID_PATTERN,
                },
                "includeRawResponse": {
                    "type": "boolean",
                    "description": "Whether to include the raw API response in the result "
                    "(default: false)",
                },
            },
            "required": ["workflowId", "workflow_id"],
        },
        handler=check_workflow_status,
    )
