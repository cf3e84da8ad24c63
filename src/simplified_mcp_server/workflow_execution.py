"""Asynchronous workflow execution with bounded status polling."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from .config import WorkflowExecutionConfig
from .errors import (
    AppError,
    ErrorType,
    StatusCheckError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)
from .models import ExecutionStatus, WorkflowExecutionResult, WorkflowStatus
from .performance_monitor import TIMEOUT, WorkflowPerformanceMonitor
from .workflow_errors import WorkflowErrorHandler

MIN_STATUS_CHECK_INTERVAL = 1000
STATUS_HEADERS = {"Accept": "application/json", "Accept-Language": "en"}

ExecutionKey = Tuple[str, str]


def build_execution_endpoint(workflow_id: str) -> str:
    return f"/api/v1/service/workflows/{workflow_id}/start"


def build_status_endpoint(workflow_id: str, instance_id: str) -> str:
    return f"/api/v1/service/workflows/{workflow_id}/runs/{instance_id}/status"


def build_execution_payload(parameters: Dict[str, Any]) -> Dict[str, Any]:
    return {"input": parameters, "source": "application"}


def parse_execution_response(data: Any) -> Dict[str, str]:
    """Extract ``correlation_id`` and ``workflow_id`` from a start response."""
    if not isinstance(data, dict):
        raise AppError(
            ErrorType.API_ERROR,
            "Invalid execution response format",
            {"response": data},
        )
    correlation_id = data.get("correlation_id")
    instance_id = data.get("workflow_id")
    if not correlation_id or not instance_id:
        raise AppError(
            ErrorType.API_ERROR,
            "Missing correlation_id or workflow_id in execution response",
            {"response": data},
        )
    return {"correlation_id": str(correlation_id), "workflow_id": str(instance_id)}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_status_response(data: Any, instance_id: str) -> WorkflowStatus:
    """Validate a status payload and convert it to a ``WorkflowStatus``."""
    details = {"response": data, "workflowInstanceId": instance_id}
    if not isinstance(data, dict):
        raise StatusCheckError(
            "Invalid status response format: response is not an object", details
        )

    missing = [f for f in ("create_time", "update_time", "start_time") if not _is_number(data.get(f))]
    if not isinstance(data.get("status"), str) or not data.get("status"):
        missing.append("status")
    if not isinstance(data.get("workflow_id"), str) or not data.get("workflow_id"):
        missing.append("workflow_id")
    for f in ("input", "output"):
        if not isinstance(data.get(f), dict):
            missing.append(f)
    if missing:
        raise StatusCheckError(
            f"Missing required fields in status response: {', '.join(missing)}",
            {**details, "missingFields": missing},
        )

    try:
        status = ExecutionStatus(data["status"])
    except ValueError:
        valid = ", ".join(s.value for s in ExecutionStatus)
        raise StatusCheckError(
            f"Invalid status value: {data['status']}. Must be one of: {valid}", details
        ) from None

    end_time = data.get("end_time")
    error = None
    if status == ExecutionStatus.FAILED:
        output = data["output"]
        error = output.get("error") or output.get("message") or "Workflow execution failed"
        error = str(error)

    return WorkflowStatus(
        create_time=data["create_time"],
        update_time=data["update_time"],
        start_time=data["start_time"],
        end_time=end_time if _is_number(end_time) else None,
        status=status,
        workflow_id=data["workflow_id"],
        input=data["input"],
        output=data["output"],
        workflow_instance_id=instance_id,
        error=error,
    )


class ExecutionHandle:
    """Cancellation token for one polling loop."""

    def __init__(self, workflow_id: str, instance_id: str):
        self.workflow_id = workflow_id
        self.instance_id = instance_id
        self.started_at = time.time()
        self._cancelled = asyncio.Event()

    @property
    def key(self) -> ExecutionKey:
        return (self.workflow_id, self.instance_id)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until cancelled, whichever is first."""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class WorkflowExecutionService:
    """Starts remote workflow runs and polls them until they finish."""

    def __init__(
        self,
        api_client: Any,
        config: WorkflowExecutionConfig,
        logger: Optional[logging.Logger] = None,
        error_handler: Optional[WorkflowErrorHandler] = None,
        performance_monitor: Optional[WorkflowPerformanceMonitor] = None,
    ):
        self.api_client = api_client
        self.config = config.model_copy(
            update={
                "status_check_interval": max(
                    config.status_check_interval, MIN_STATUS_CHECK_INTERVAL
                )
            }
        )
        self.logger = (logger or logging.getLogger(__name__)).getChild("WorkflowExecution")
        self.error_handler = error_handler or WorkflowErrorHandler(self.logger)
        self.performance_monitor = performance_monitor or WorkflowPerformanceMonitor(
            logger=self.logger
        )
        self._active: Dict[ExecutionKey, ExecutionHandle] = {}
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_executions)

    async def execute_workflow(
        self, workflow_id: str, parameters: Dict[str, Any]
    ) -> WorkflowExecutionResult:
        """Start a workflow and wait for its terminal status. Never raises."""
        async with self._semaphore:
            return await self._execute(workflow_id, parameters)

    async def _execute(
        self, workflow_id: str, parameters: Dict[str, Any]
    ) -> WorkflowExecutionResult:
        self.logger.info(f"Starting workflow execution for workflow {workflow_id}")
        started: Dict[str, str] = {}
        metric = self.performance_monitor.start_execution(workflow_id)

        try:
            response = await self.api_client.post(
                build_execution_endpoint(workflow_id),
                build_execution_payload(parameters),
            )
            started = parse_execution_response(response.data)
            self.performance_monitor.record_started(
                metric, started["workflow_id"], started["correlation_id"]
            )
            self.logger.info(
                f"Workflow {workflow_id} started with correlation_id: "
                f"{started['correlation_id']}, workflow_id: {started['workflow_id']}"
            )

            final = await self.poll_until_complete(
                workflow_id, started["workflow_id"], self.config.execution_timeout
            )

            result = WorkflowExecutionResult(
                success=final.status == ExecutionStatus.COMPLETED,
                correlation_id=started["correlation_id"],
                workflow_instance_id=started["workflow_id"],
                original_workflow_id=workflow_id,
                status=final.status,
                error=final.error,
                execution_duration=final.execution_duration,
                input=final.input,
                output=final.output,
                start_time=final.start_time,
                end_time=final.end_time,
                create_time=final.create_time,
                update_time=final.update_time,
                metadata={"executionResponse": started},
            )
            self.logger.info(
                f"Workflow {workflow_id} finished with status {final.status.value}, "
                f"duration: {result.execution_duration}ms"
            )
            self.performance_monitor.complete_execution(
                metric, final.status.value, final.error
            )
            return result

        except Exception as e:
            failed = self.error_handler.handle_execution_error(
                e,
                workflow_id,
                {
                    "parameters": parameters,
                    "correlationId": started.get("correlation_id"),
                    "workflowInstanceId": started.get("workflow_id"),
                },
            )
            status = (
                TIMEOUT
                if failed.metadata.get("errorType") == TIMEOUT
                else failed.status.value
            )
            self.performance_monitor.complete_execution(metric, status, failed.error)
            return failed

    async def get_execution_status(
        self, workflow_id: str, instance_id: str
    ) -> WorkflowStatus:
        endpoint = build_status_endpoint(workflow_id, instance_id)
        try:
            response = await self.api_client.get(endpoint, headers=dict(STATUS_HEADERS))
            return parse_status_response(response.data, instance_id)
        except StatusCheckError as e:
            self.error_handler.handle_status_check_error(e, workflow_id, instance_id)
            raise
        except AppError as e:
            self.error_handler.handle_status_check_error(e, workflow_id, instance_id)
            raise StatusCheckError(
                f"Failed to get workflow status: {e.message}",
                {"workflowId": workflow_id, "workflowInstanceId": instance_id},
                e.status,
            ) from e

    async def _wait_for_next_poll(self, handle: ExecutionHandle) -> None:
        await handle.wait(self.config.status_check_interval / 1000.0)

    async def poll_until_complete(
        self, workflow_id: str, instance_id: str, timeout_ms: Optional[int] = None
    ) -> WorkflowStatus:
        """Poll until a terminal status, the timeout, or cancellation."""
        timeout_ms = timeout_ms or self.config.execution_timeout
        handle = ExecutionHandle(workflow_id, instance_id)
        self._active[handle.key] = handle
        started = time.monotonic()
        details = {"workflowId": workflow_id, "workflowInstanceId": instance_id}

        try:
            while True:
                if (time.monotonic() - started) * 1000 > timeout_ms:
                    raise WorkflowTimeoutError(timeout_ms, details)
                if handle.cancelled:
                    raise WorkflowCancelledError(details)

                status = await self.get_execution_status(workflow_id, instance_id)
                if status.is_terminal:
                    self.logger.info(
                        f"Workflow {workflow_id} polling completed with status: "
                        f"{status.status.value}"
                    )
                    return status

                await self._wait_for_next_poll(handle)
        finally:
            if self._active.get(handle.key) is handle:
                del self._active[handle.key]

    async def cancel_execution(self, workflow_id: str, instance_id: str) -> bool:
        """Stop local polling for an execution. The remote run is not affected."""
        handle = self._active.pop((workflow_id, instance_id), None)
        if handle is not None:
            handle.cancel()
        self.logger.info(
            f"Cancelled local polling for workflow {workflow_id}, instance {instance_id}"
        )
        return True

    async def cancel_all_executions(self) -> None:
        for workflow_id, instance_id in list(self._active):
            await self.cancel_execution(workflow_id, instance_id)

    def get_active_executions_count(self) -> int:
        return len(self._active)

    def get_active_execution_keys(self) -> List[str]:
        return [f"{w}:{i}" for w, i in self._active]

    def get_performance_stats(self, window_ms: Optional[int] = None) -> Dict[str, Any]:
        return self.performance_monitor.get_performance_stats(window_ms)

    async def shutdown(self) -> None:
        count = len(self._active)
        await self.cancel_all_executions()
        self.logger.info(f"Execution service shut down ({count} executions cancelled)")
