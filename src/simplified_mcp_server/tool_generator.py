"""Conversion of workflow definitions into callable MCP tools."""

import json
import logging
import re
from typing import Any, Dict, Iterable, Iterator, Optional

from .errors import AppError, ErrorType
from .models import ToolDefinition, WorkflowDefinition, WorkflowExecutionResult, text_response

TOOL_NAME_PREFIX = "workflow-"
MAX_TOOL_NAME_LENGTH = 64
MAX_NAME_ATTEMPTS = 1000


def _id_suffix(workflow_id: str) -> str:
    suffix = re.sub(r"[^a-z0-9_-]+", "-", str(workflow_id).lower()).strip("-_")
    return suffix[:20] or "id"


def _name_suffixes(workflow_id: str) -> Iterator[str]:
    yield _id_suffix(workflow_id)
    for counter in range(2, MAX_NAME_ATTEMPTS + 1):
        yield str(counter)


class WorkflowToolGenerator:
    """Builds ``ToolDefinition`` objects whose handlers run remote workflows."""

    def __init__(self, execution_service: Any, logger: Optional[logging.Logger] = None):
        self.execution_service = execution_service
        self.logger = (logger or logging.getLogger(__name__)).getChild("WorkflowToolGenerator")
        self.total_generated = 0
        self.errors = 0

    @staticmethod
    def generate_tool_name(
        workflow: WorkflowDefinition, existing_names: Optional[Iterable[str]] = None
    ) -> str:
        """Return ``workflow-<name>``, suffixed when that name is already taken.

        The workflow id is tried as the suffix first, then a counter. Names
        never exceed ``MAX_TOOL_NAME_LENGTH``.
        """
        existing = set(existing_names or ())
        base = f"{TOOL_NAME_PREFIX}{workflow.name}"[:MAX_TOOL_NAME_LENGTH]
        if base not in existing:
            return base

        for suffix in _name_suffixes(workflow.id):
            stem = base[: MAX_TOOL_NAME_LENGTH - len(suffix) - 1].rstrip("-_")
            name = f"{stem}_{suffix}"
            if name not in existing:
                return name

        raise AppError(
            ErrorType.VALIDATION_ERROR,
            f"Unable to generate unique tool name for workflow: {workflow.name}",
            {"workflowId": workflow.id, "baseName": base},
        )

    def convert_workflow_to_tool(
        self,
        workflow: WorkflowDefinition,
        existing_names: Optional[Iterable[str]] = None,
    ) -> ToolDefinition:
        try:
            self._validate_workflow(workflow)
            name = self.generate_tool_name(workflow, existing_names)
        except AppError:
            self.errors += 1
            raise

        workflow_id = workflow.id
        if name != f"{TOOL_NAME_PREFIX}{workflow.name}":
            self.logger.info(f"Tool name for workflow {workflow_id} deduplicated to {name}")

        async def handler(params: Dict[str, Any], api_client: Any) -> Dict[str, Any]:
            self.logger.info(f"Executing workflow tool: {name} ({workflow_id})")
            result = await self.execution_service.execute_workflow(workflow_id, params)
            return self.format_execution_result(result, workflow)

        self.total_generated += 1
        return ToolDefinition(
            name=name,
            description=f"{workflow.description} (Workflow ID: {workflow.id}) "
            f"[{workflow.execution_type}]",
            input_schema=workflow.input_schema.to_json_schema(),
            handler=handler,
            category=workflow.category or "workflow",
            version=workflow.version or "1.0.0",
            metadata={"workflowId": workflow.id},
        )

    def format_execution_result(
        self, result: WorkflowExecutionResult, workflow: WorkflowDefinition
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": result.success,
            "workflowId": workflow.id,
            "workflowName": workflow.name,
            "correlationId": result.correlation_id,
            "workflowInstanceId": result.workflow_instance_id,
            "status": result.status.value,
        }
        if result.success:
            body["executionDuration"] = result.execution_duration
            body["output"] = result.output or {}
            self.logger.info(
                f"Workflow tool execution successful: {workflow.name}, "
                f"duration: {result.execution_duration}ms"
            )
        else:
            body["error"] = result.error
            self.logger.error(
                f"Workflow tool execution failed: {workflow.name}, error: {result.error}"
            )
        body["metadata"] = {
            "startTime": result.start_time,
            "endTime": result.end_time,
            "createTime": result.create_time,
            "updateTime": result.update_time,
        }
        return text_response(json.dumps(body, indent=2, default=str), is_error=not result.success)

    def get_generation_stats(self) -> Dict[str, int]:
        return {"total_generated": self.total_generated, "errors": self.errors}

    def _validate_workflow(self, workflow: WorkflowDefinition) -> None:
        if not workflow.id:
            raise AppError(ErrorType.VALIDATION_ERROR, "Workflow ID is required")
        if not workflow.name:
            raise AppError(
                ErrorType.VALIDATION_ERROR,
                "Workflow name is required",
                {"workflowId": workflow.id},
            )
        if not workflow.description:
            raise AppError(
                ErrorType.VALIDATION_ERROR,
                "Workflow description is required",
                {"workflowId": workflow.id},
            )
        if workflow.input_schema.type != "object":
            raise AppError(
                ErrorType.VALIDATION_ERROR,
                "Workflow input schema must be of type 'object'",
                {"workflowId": workflow.id},
            )
