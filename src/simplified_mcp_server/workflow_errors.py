"""Centralized error handling for workflow operations.

Discovery and tool generation failures are logged and recorded so the server
can carry on with whatever tools it already has. Execution failures are turned
into failed ``WorkflowExecutionResult`` objects instead of propagating.
"""

import logging
from collections import Counter, deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import (
    AppError,
    ErrorType,
    StatusCheckError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
    create_tool_error_response,
    sanitize_parameters,
)
from .models import ExecutionStatus, WorkflowDefinition, WorkflowExecutionResult

MAX_METRICS_HISTORY = 1000


class WorkflowErrorType(str, Enum):
    DISCOVERY_FAILED = "DISCOVERY_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    STATUS_CHECK_FAILED = "STATUS_CHECK_FAILED"
    TOOL_GENERATION_FAILED = "TOOL_GENERATION_FAILED"
    WORKFLOWS_LIST_TOOL_UNAVAILABLE = "WORKFLOWS_LIST_TOOL_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


# (severity, retryable) per error class
ERROR_CLASS_TRAITS: Dict[WorkflowErrorType, tuple] = {
    WorkflowErrorType.DISCOVERY_FAILED: ("warning", True),
    WorkflowErrorType.VALIDATION_FAILED: ("info", False),
    WorkflowErrorType.EXECUTION_FAILED: ("error", False),
    WorkflowErrorType.STATUS_CHECK_FAILED: ("warning", True),
    WorkflowErrorType.TOOL_GENERATION_FAILED: ("error", False),
    WorkflowErrorType.WORKFLOWS_LIST_TOOL_UNAVAILABLE: ("warning", True),
    WorkflowErrorType.TIMEOUT: ("warning", True),
    WorkflowErrorType.CANCELLED: ("info", False),
}

USER_MESSAGES: Dict[WorkflowErrorType, str] = {
    WorkflowErrorType.WORKFLOWS_LIST_TOOL_UNAVAILABLE: (
        "Workflow discovery service is currently unavailable. Please try again later."
    ),
    WorkflowErrorType.DISCOVERY_FAILED: (
        "Failed to discover available workflows. Using cached workflows if available."
    ),
    WorkflowErrorType.VALIDATION_FAILED: (
        "Workflow definition is invalid and cannot be used."
    ),
    WorkflowErrorType.STATUS_CHECK_FAILED: (
        "Unable to check workflow status. The workflow may still be running."
    ),
    WorkflowErrorType.TOOL_GENERATION_FAILED: (
        "Failed to create workflow tool. This workflow is not available."
    ),
    WorkflowErrorType.TIMEOUT: (
        "Workflow execution timed out. Please try again or check if the "
        "workflow is still running."
    ),
    WorkflowErrorType.CANCELLED: "Workflow execution was cancelled.",
}


class WorkflowErrorMetric(BaseModel):
    """One recorded workflow error."""

    timestamp: str
    error_type: WorkflowErrorType
    operation: str
    workflow_id: Optional[str] = None
    severity: str
    is_retryable: bool
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


def _error_message(error: BaseException) -> str:
    return error.message if isinstance(error, AppError) else str(error)


class WorkflowErrorHandler:
    """Classifies, logs and records workflow errors."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        base = logger or logging.getLogger(__name__)
        self.logger = base.getChild("WorkflowErrorHandler")
        self._metrics: Deque[WorkflowErrorMetric] = deque(maxlen=MAX_METRICS_HISTORY)

    @staticmethod
    def get_severity(error_type: WorkflowErrorType) -> str:
        return ERROR_CLASS_TRAITS[error_type][0]

    @staticmethod
    def is_retryable(error_type: WorkflowErrorType) -> bool:
        return ERROR_CLASS_TRAITS[error_type][1]

    @staticmethod
    def get_user_friendly_message(
        error: BaseException, error_type: WorkflowErrorType
    ) -> str:
        if error_type == WorkflowErrorType.EXECUTION_FAILED:
            return f"Workflow execution failed: {_error_message(error)}"
        return USER_MESSAGES[error_type]

    def classify_error(self, error: BaseException) -> WorkflowErrorType:
        """Map an exception raised during execution to a workflow error class."""
        if isinstance(error, WorkflowCancelledError):
            return WorkflowErrorType.CANCELLED
        if isinstance(error, WorkflowTimeoutError):
            return WorkflowErrorType.TIMEOUT
        if isinstance(error, StatusCheckError):
            return WorkflowErrorType.STATUS_CHECK_FAILED

        message = _error_message(error).lower()
        if isinstance(error, AppError):
            if error.type == ErrorType.VALIDATION_ERROR:
                return WorkflowErrorType.VALIDATION_FAILED
            if error.type in (ErrorType.NETWORK_ERROR, ErrorType.API_ERROR):
                if error.status == 408 or "timeout" in message:
                    return WorkflowErrorType.TIMEOUT
            return WorkflowErrorType.EXECUTION_FAILED

        if "timeout" in message:
            return WorkflowErrorType.TIMEOUT
        if "cancel" in message:
            return WorkflowErrorType.CANCELLED
        return WorkflowErrorType.EXECUTION_FAILED

    def is_workflows_list_unavailable(self, error: BaseException) -> bool:
        """True when the error suggests the workflow list endpoint is unreachable."""
        if isinstance(error, AppError):
            if error.type == ErrorType.NETWORK_ERROR:
                return True
            if error.status == 404:
                return True
            if error.type == ErrorType.API_ERROR:
                lowered = error.message.lower()
                if "not found" in lowered or "unavailable" in lowered:
                    return True

        message = _error_message(error).lower()
        return any(
            marker in message
            for marker in (
                "workflows-list-tool",
                "tool not found",
                "connection refused",
                "service unavailable",
            )
        )

    def handle_discovery_error(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> WorkflowErrorType:
        if self.is_workflows_list_unavailable(error):
            error_type = WorkflowErrorType.WORKFLOWS_LIST_TOOL_UNAVAILABLE
        else:
            error_type = WorkflowErrorType.DISCOVERY_FAILED

        self._record(error, error_type, "workflow_discovery", context)
        if error_type == WorkflowErrorType.WORKFLOWS_LIST_TOOL_UNAVAILABLE:
            self.logger.warning(
                "Workflow list is unavailable; continuing with static tools only"
            )
        else:
            self.logger.warning(
                "Workflow discovery failed; continuing with existing or cached workflows"
            )
        return error_type

    def handle_validation_error(
        self,
        error: BaseException,
        workflow_data: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        if isinstance(workflow_data, dict):
            ctx.setdefault("workflowId", workflow_data.get("id"))
            ctx["workflow"] = _summarize_workflow(workflow_data)
        self._record(error, WorkflowErrorType.VALIDATION_FAILED, "workflow_validation", ctx)

    def handle_execution_error(
        self,
        error: BaseException,
        workflow_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        """Record an execution failure and build the failed result for it."""
        ctx = dict(context or {})
        ctx["workflowId"] = workflow_id
        if "parameters" in ctx:
            ctx["parameters"] = sanitize_parameters(ctx["parameters"])

        error_type = self.classify_error(error)
        self._record(error, error_type, "workflow_execution", ctx)

        status = (
            ExecutionStatus.CANCELLED
            if error_type == WorkflowErrorType.CANCELLED
            else ExecutionStatus.FAILED
        )
        return WorkflowExecutionResult(
            success=False,
            correlation_id=ctx.get("correlationId") or "",
            workflow_instance_id=ctx.get("workflowInstanceId") or "",
            original_workflow_id=workflow_id,
            status=status,
            error=_error_message(error),
            metadata={
                "errorType": error_type.value,
                "isRetryable": self.is_retryable(error_type),
                "userFriendlyMessage": self.get_user_friendly_message(error, error_type),
                "timestamp": _now_iso(),
            },
        )

    def handle_status_check_error(
        self,
        error: BaseException,
        workflow_id: str,
        instance_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = {**(context or {}), "workflowId": workflow_id, "workflowInstanceId": instance_id}
        self._record(error, WorkflowErrorType.STATUS_CHECK_FAILED, "workflow_status_check", ctx)

    def handle_tool_generation_error(
        self,
        error: BaseException,
        workflow: Optional[WorkflowDefinition] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        if workflow is not None:
            ctx.setdefault("workflowId", workflow.id)
            ctx.setdefault("toolName", workflow.name)
        self._record(
            error, WorkflowErrorType.TOOL_GENERATION_FAILED, "workflow_tool_generation", ctx
        )
        label = f"{workflow.name} ({workflow.id})" if workflow else "unknown workflow"
        self.logger.error(f"Failed to generate tool for {label}; tool will be skipped")

    def create_workflow_tool_error_response(
        self,
        error: BaseException,
        tool_name: str,
        parameters: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Build an MCP error envelope for a failed workflow tool call."""
        error_type = self.classify_error(error)
        ctx = {
            **(context or {}),
            "toolName": tool_name,
            "parameters": sanitize_parameters(parameters),
        }
        self._record(error, error_type, "workflow_tool_execution", ctx)

        base_error = (
            error
            if isinstance(error, AppError)
            else AppError(ErrorType.TOOL_ERROR, str(error))
        )
        response = create_tool_error_response(
            base_error,
            tool_name,
            parameters,
            f"Workflow tool execution failed: {error_type.value}",
        )
        response["data"].update(
            {
                "workflowErrorType": error_type.value,
                "isWorkflowError": True,
                "isRetryable": self.is_retryable(error_type),
                "userFriendlyMessage": self.get_user_friendly_message(error, error_type),
            }
        )
        return response

    def sanitize_parameters(
        self, parameters: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        return sanitize_parameters(parameters)

    def get_error_metrics(self) -> List[WorkflowErrorMetric]:
        return list(self._metrics)

    def clear_error_metrics(self) -> None:
        self._metrics.clear()

    def get_error_statistics(self) -> Dict[str, Any]:
        by_type = Counter(m.error_type.value for m in self._metrics)
        by_severity = Counter(m.severity for m in self._metrics)
        return {
            "total_errors": len(self._metrics),
            "errors_by_type": {t.value: by_type.get(t.value, 0) for t in WorkflowErrorType},
            "errors_by_severity": {
                s: by_severity.get(s, 0) for s in ("critical", "error", "warning", "info")
            },
            "retryable_error_count": sum(1 for m in self._metrics if m.is_retryable),
        }

    def _record(
        self,
        error: BaseException,
        error_type: WorkflowErrorType,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        severity, retryable = ERROR_CLASS_TRAITS[error_type]
        ctx = dict(context or {})
        message = _error_message(error)

        log_message = f"[{error_type.value}] {operation}: {message}"
        if ctx.get("workflowId"):
            log_message += f" (workflow {ctx['workflowId']})"
        if severity in ("critical", "error"):
            self.logger.error(log_message)
        elif severity == "warning":
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        workflow_id = ctx.get("workflowId")
        self._metrics.append(
            WorkflowErrorMetric(
                timestamp=_now_iso(),
                error_type=error_type,
                operation=operation,
                workflow_id=str(workflow_id) if workflow_id is not None else None,
                severity=severity,
                is_retryable=retryable,
                message=message,
                context=ctx,
            )
        )


def _summarize_workflow(workflow: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": workflow.get("id"),
        "title": workflow.get("title"),
        "hasInputs": workflow.get("inputs") is not None,
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
