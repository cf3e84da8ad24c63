"""Tests for workflow execution and status polling."""

import asyncio

import pytest

from simplified_mcp_server.config import WorkflowExecutionConfig
from simplified_mcp_server.errors import (
    AppError,
    ErrorType,
    StatusCheckError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)
from simplified_mcp_server.models import ExecutionStatus
from simplified_mcp_server.workflow_execution import (
    ExecutionHandle,
    WorkflowExecutionService,
    build_execution_endpoint,
    build_execution_payload,
    build_status_endpoint,
    parse_execution_response,
    parse_status_response,
)

INSTANCE_ID = "3f1c2b7e-8a4d-4e2f-9b6a-1c2d3e4f5a6b"


@pytest.fixture
def fast_service(mock_api_client, monkeypatch):
    """Execution service whose inter-poll wait yields instead of sleeping."""
    service = WorkflowExecutionService(
        mock_api_client,
        WorkflowExecutionConfig(execution_timeout=60000, status_check_interval=1000),
    )

    async def no_wait(handle):
        await asyncio.sleep(0)

    monkeypatch.setattr(service, "_wait_for_next_poll", no_wait)
    return service


def test_build_execution_payload():
    assert build_execution_payload({"a": 1}) == {"input": {"a": 1}, "source": "application"}


def test_build_endpoints():
    assert build_execution_endpoint("2724") == "/api/v1/service/workflows/2724/start"
    assert (
        build_status_endpoint("2724", "uuid")
        == "/api/v1/service/workflows/2724/runs/uuid/status"
    )


def test_parse_execution_response():
    parsed = parse_execution_response({"correlation_id": "c-1", "workflow_id": "w-1"})
    assert parsed == {"correlation_id": "c-1", "workflow_id": "w-1"}

    with pytest.raises(AppError) as exc_info:
        parse_execution_response({"correlation_id": "c-1"})
    assert exc_info.value.type == ErrorType.API_ERROR


class TestParseStatusResponse:
    def test_running_status(self, make_status):
        status = parse_status_response(make_status("RUNNING"), INSTANCE_ID)

        assert status.status == ExecutionStatus.RUNNING
        assert status.end_time is None
        assert status.error is None
        assert status.workflow_instance_id == INSTANCE_ID
        assert not status.is_terminal

    def test_failed_status_extracts_error(self, make_status):
        payload = make_status("FAILED", output={"error": "bad input"}, end_time=1_700_000_001_000)
        status = parse_status_response(payload, INSTANCE_ID)

        assert status.error == "bad input"
        assert status.is_terminal

    def test_failed_status_default_error(self, make_status):
        payload = make_status("FAILED", end_time=1_700_000_001_000)
        assert parse_status_response(payload, INSTANCE_ID).error == "Workflow execution failed"

    def test_missing_fields(self, make_status):
        payload = make_status()
        del payload["start_time"]
        payload["input"] = None

        with pytest.raises(StatusCheckError) as exc_info:
            parse_status_response(payload, INSTANCE_ID)
        assert "start_time" in exc_info.value.message
        assert "input" in exc_info.value.message

    def test_boolean_is_not_a_timestamp(self, make_status):
        payload = make_status()
        payload["create_time"] = True

        with pytest.raises(StatusCheckError):
            parse_status_response(payload, INSTANCE_ID)

    def test_unknown_status(self, make_status):
        with pytest.raises(StatusCheckError) as exc_info:
            parse_status_response(make_status("PAUSED"), INSTANCE_ID)
        assert "Invalid status value" in exc_info.value.message

    def test_non_object(self):
        with pytest.raises(StatusCheckError):
            parse_status_response("nope", INSTANCE_ID)


def test_status_check_interval_is_floored(mock_api_client):
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(status_check_interval=10)
    )
    assert service.config.status_check_interval == 1000


@pytest.mark.asyncio
async def test_execution_handle_wait_returns_early_on_cancel():
    handle = ExecutionHandle("1", INSTANCE_ID)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        handle.cancel()

    task = asyncio.create_task(cancel_soon())
    await asyncio.wait_for(handle.wait(5), timeout=1)
    await task
    assert handle.cancelled


@pytest.mark.asyncio
async def test_get_execution_status_sends_headers(fast_service, mock_api_client, make_response, make_status):
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    await fast_service.get_execution_status("2724", INSTANCE_ID)

    mock_api_client.get.assert_awaited_once_with(
        f"/api/v1/service/workflows/2724/runs/{INSTANCE_ID}/status",
        headers={"Accept": "application/json", "Accept-Language": "en"},
    )


@pytest.mark.asyncio
async def test_get_execution_status_wraps_api_errors(fast_service, mock_api_client):
    mock_api_client.get.side_effect = AppError(ErrorType.API_ERROR, "down", status=502)

    with pytest.raises(StatusCheckError) as exc_info:
        await fast_service.get_execution_status("2724", INSTANCE_ID)

    assert exc_info.value.status == 502
    assert "Failed to get workflow status" in exc_info.value.message


@pytest.mark.asyncio
async def test_poll_until_complete_stops_at_terminal(
    fast_service, mock_api_client, make_response, make_status
):
    """Test that polling returns the first terminal status."""
    mock_api_client.get.side_effect = [
        make_response(make_status("RUNNING")),
        make_response(make_status("RUNNING")),
        make_response(make_status("COMPLETED", output={"ok": True}, end_time=1_700_000_004_000)),
        make_response(make_status("RUNNING")),
    ]

    status = await fast_service.poll_until_complete("2724", INSTANCE_ID)

    assert status.status == ExecutionStatus.COMPLETED
    assert status.execution_duration == 4000
    assert mock_api_client.get.await_count == 3
    assert fast_service.get_active_executions_count() == 0


@pytest.mark.asyncio
async def test_poll_until_complete_times_out(
    mock_api_client, make_response, make_status, monkeypatch
):
    service = WorkflowExecutionService(mock_api_client, WorkflowExecutionConfig())

    async def short_wait(handle):
        await asyncio.sleep(0.01)

    monkeypatch.setattr(service, "_wait_for_next_poll", short_wait)
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    with pytest.raises(WorkflowTimeoutError) as exc_info:
        await service.poll_until_complete("2724", INSTANCE_ID, timeout_ms=50)

    assert exc_info.value.message == "Workflow execution timeout after 50ms"
    assert service.get_active_executions_count() == 0


@pytest.mark.asyncio
async def test_cancel_execution_mid_poll(mock_api_client, make_response, make_status):
    """Test cooperative cancellation cuts the inter-poll wait short."""
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(status_check_interval=60000)
    )
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    poll = asyncio.create_task(service.poll_until_complete("2724", INSTANCE_ID))
    while mock_api_client.get.await_count == 0:
        await asyncio.sleep(0)

    assert service.get_active_execution_keys() == [f"2724:{INSTANCE_ID}"]
    assert await service.cancel_execution("2724", INSTANCE_ID) is True

    with pytest.raises(WorkflowCancelledError):
        await asyncio.wait_for(poll, timeout=1)
    assert service.get_active_executions_count() == 0


@pytest.mark.asyncio
async def test_cancel_unknown_execution_is_idempotent(fast_service):
    assert await fast_service.cancel_execution("1", "missing") is True
    assert await fast_service.cancel_execution("1", "missing") is True


@pytest.mark.asyncio
async def test_execute_workflow_success(fast_service, mock_api_client, make_response, make_status):
    mock_api_client.post.return_value = make_response(
        {"correlation_id": "corr-1", "workflow_id": INSTANCE_ID}
    )
    mock_api_client.get.side_effect = [
        make_response(make_status("RUNNING")),
        make_response(
            make_status("COMPLETED", output={"summary": "done"}, end_time=1_700_000_002_500)
        ),
    ]

    result = await fast_service.execute_workflow("2724", {"a": 1})

    mock_api_client.post.assert_awaited_once_with(
        "/api/v1/service/workflows/2724/start", {"input": {"a": 1}, "source": "application"}
    )
    assert result.success is True
    assert result.status == ExecutionStatus.COMPLETED
    assert result.correlation_id == "corr-1"
    assert result.workflow_instance_id == INSTANCE_ID
    assert result.original_workflow_id == "2724"
    assert result.output == {"summary": "done"}
    assert result.execution_duration == 2500


@pytest.mark.asyncio
async def test_execute_workflow_remote_failure(fast_service, mock_api_client, make_response, make_status):
    mock_api_client.post.return_value = make_response(
        {"correlation_id": "corr-1", "workflow_id": INSTANCE_ID}
    )
    mock_api_client.get.return_value = make_response(
        make_status("FAILED", output={"message": "quota exceeded"}, end_time=1_700_000_001_000)
    )

    result = await fast_service.execute_workflow("2724", {})

    assert result.success is False
    assert result.status == ExecutionStatus.FAILED
    assert result.error == "quota exceeded"


@pytest.mark.asyncio
async def test_execute_workflow_start_failure_never_raises(fast_service, mock_api_client):
    mock_api_client.post.side_effect = AppError(ErrorType.VALIDATION_ERROR, "bad", status=400)

    result = await fast_service.execute_workflow("2724", {"token": "secret"})

    assert result.success is False
    assert result.status == ExecutionStatus.FAILED
    assert result.metadata["errorType"] == "VALIDATION_FAILED"
    assert result.metadata["isRetryable"] is False


@pytest.mark.asyncio
async def test_execute_workflow_malformed_start_response(fast_service, mock_api_client, make_response):
    mock_api_client.post.return_value = make_response({"correlation_id": "only"})

    result = await fast_service.execute_workflow("2724", {})

    assert result.success is False
    assert "Missing correlation_id" in result.error


@pytest.mark.asyncio
async def test_execute_workflow_cancelled(mock_api_client, make_response, make_status):
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(status_check_interval=60000)
    )
    mock_api_client.post.return_value = make_response(
        {"correlation_id": "corr-1", "workflow_id": INSTANCE_ID}
    )
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    task = asyncio.create_task(service.execute_workflow("2724", {}))
    while service.get_active_executions_count() == 0:
        await asyncio.sleep(0)
    await service.cancel_all_executions()

    result = await asyncio.wait_for(task, timeout=1)
    assert result.status == ExecutionStatus.CANCELLED
    assert result.metadata["errorType"] == "CANCELLED"
    assert result.correlation_id == "corr-1"


@pytest.mark.asyncio
async def test_concurrent_executions_are_bounded(mock_api_client, make_response, make_status):
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(max_concurrent_executions=1)
    )
    release = asyncio.Event()
    in_flight = []

    async def slow_post(path, payload):
        in_flight.append(path)
        await release.wait()
        return make_response({"correlation_id": "c", "workflow_id": INSTANCE_ID})

    mock_api_client.post.side_effect = slow_post
    mock_api_client.get.return_value = make_response(
        make_status("COMPLETED", end_time=1_700_000_001_000)
    )

    first = asyncio.create_task(service.execute_workflow("1", {}))
    second = asyncio.create_task(service.execute_workflow("2", {}))
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(in_flight) == 1
    release.set()
    results = await asyncio.gather(first, second)
    assert all(r.success for r in results)
    assert len(in_flight) == 2


@pytest.mark.asyncio
async def test_shutdown_cancels_everything(mock_api_client, make_response, make_status):
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(status_check_interval=60000)
    )
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    polls = [
        asyncio.create_task(service.poll_until_complete("1", "a")),
        asyncio.create_task(service.poll_until_complete("2", "b")),
    ]
    while service.get_active_executions_count() < 2:
        await asyncio.sleep(0)

    await service.shutdown()
    results = await asyncio.gather(*polls, return_exceptions=True)

    assert all(isinstance(r, WorkflowCancelledError) for r in results)
    assert service.get_active_executions_count() == 0


@pytest.mark.asyncio
async def test_successful_execution_is_measured(
    fast_service, mock_api_client, make_response, make_status
):
    mock_api_client.post.return_value = make_response(
        {"correlation_id": "corr-1", "workflow_id": INSTANCE_ID}
    )
    mock_api_client.get.return_value = make_response(
        make_status("COMPLETED", end_time=1_700_000_001_000)
    )

    await fast_service.execute_workflow("2724", {})

    stats = fast_service.get_performance_stats()
    assert stats["total_executions"] == 1
    assert stats["completed_executions"] == 1
    assert stats["running_executions"] == 0
    metric = fast_service.performance_monitor.get_all_metrics()[0]
    assert metric.workflow_instance_id == INSTANCE_ID
    assert metric.correlation_id == "corr-1"


@pytest.mark.asyncio
async def test_failed_start_is_measured(fast_service, mock_api_client):
    mock_api_client.post.side_effect = AppError(ErrorType.API_ERROR, "down", status=503)

    await fast_service.execute_workflow("2724", {})

    stats = fast_service.get_performance_stats()
    assert stats["failed_executions"] == 1
    assert stats["error_rate"] == 1
    metric = fast_service.performance_monitor.get_all_metrics()[0]
    assert metric.status == "FAILED"
    assert metric.error
    assert metric.workflow_instance_id is None


@pytest.mark.asyncio
async def test_timed_out_execution_is_measured(
    mock_api_client, make_response, make_status, monkeypatch
):
    service = WorkflowExecutionService(
        mock_api_client, WorkflowExecutionConfig(execution_timeout=50)
    )

    async def short_wait(handle):
        await asyncio.sleep(0.01)

    monkeypatch.setattr(service, "_wait_for_next_poll", short_wait)
    mock_api_client.post.return_value = make_response(
        {"correlation_id": "corr-1", "workflow_id": INSTANCE_ID}
    )
    mock_api_client.get.return_value = make_response(make_status("RUNNING"))

    result = await service.execute_workflow("2724", {})

    assert result.success is False
    stats = service.get_performance_stats()
    assert stats["timeout_executions"] == 1
    assert stats["failed_executions"] == 0
