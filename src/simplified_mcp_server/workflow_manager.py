"""Lifecycle of dynamically generated workflow tools.

The manager keeps the tool registry in sync with the remote workflow list.
Each refresh moves through ``discovering -> diffing -> applying`` and back to
``idle``; refreshes never overlap, a trigger that arrives while one is running
is skipped.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .config import Config
from .models import WorkflowDefinition
from .registry import ToolRegistry
from .tool_generator import WorkflowToolGenerator
from .workflow_discovery import WorkflowDiscoveryService
from .workflow_errors import WorkflowErrorHandler
from .workflow_execution import WorkflowExecutionService


class RefreshState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    DIFFING = "diffing"
    APPLYING = "applying"


class RefreshSummary(BaseModel):
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: int = 0
    skipped: bool = False


def _workflow_changed(old: WorkflowDefinition, new: WorkflowDefinition) -> bool:
    return (
        old.name != new.name
        or old.description != new.description
        or old.input_schema.to_json_schema() != new.input_schema.to_json_schema()
    )


class WorkflowToolManager:
    """Registers, updates and removes workflow tools in a ``ToolRegistry``."""

    def __init__(
        self,
        config: Config,
        registry: ToolRegistry,
        discovery_service: WorkflowDiscoveryService,
        execution_service: WorkflowExecutionService,
        tool_generator: Optional[WorkflowToolGenerator] = None,
        logger: Optional[logging.Logger] = None,
        error_handler: Optional[WorkflowErrorHandler] = None,
    ):
        self.config = config
        self.registry = registry
        self.discovery_service = discovery_service
        self.execution_service = execution_service
        self.logger = (logger or logging.getLogger(__name__)).getChild("WorkflowToolManager")
        self.tool_generator = tool_generator or WorkflowToolGenerator(
            execution_service, self.logger
        )
        self.error_handler = error_handler or WorkflowErrorHandler(self.logger)

        self.state = RefreshState.IDLE
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._tool_names: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._last_refresh_time: Optional[float] = None

    def is_enabled(self) -> bool:
        return self.config.workflows_enabled

    async def initialize(self) -> None:
        """Run the first refresh and start auto-refresh. Safe to call twice."""
        if self._initialized:
            return
        self._initialized = True

        if not self.is_enabled():
            self.logger.info("Workflow tools are disabled")
            return

        try:
            summary = await self.refresh_workflows()
            self.logger.info(
                f"Initial workflow refresh: {summary.added} added, {summary.errors} errors"
            )
        except Exception as e:
            self.logger.error(f"Initial workflow refresh failed: {e}")

        if self.discovery_service.get_cache_stats().get("last_discovery_time") is None:
            self.logger.warning(
                "Workflow list is not reachable; workflow tools may be unavailable"
            )

        interval = self.config.workflow_discovery_interval
        if interval > 0:
            self._refresh_task = asyncio.create_task(self._auto_refresh_loop(interval))
            self.logger.info(f"Auto-refresh enabled every {interval}ms")

    async def _auto_refresh_loop(self, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            try:
                await self.refresh_workflows()
            except Exception as e:
                self.logger.error(f"Scheduled workflow refresh failed: {e}")

    async def refresh_workflows(self) -> RefreshSummary:
        """Bring the registry in line with the current remote workflow list."""
        if self._lock.locked():
            self.logger.info("Workflow refresh already in progress, skipping")
            return RefreshSummary(skipped=True)

        async with self._lock:
            try:
                return await self._refresh()
            finally:
                self.state = RefreshState.IDLE

    async def trigger_manual_refresh(self) -> RefreshSummary:
        self.logger.info("Manual workflow refresh requested")
        return await self.refresh_workflows()

    async def force_refresh(self) -> RefreshSummary:
        """Refresh without the cache; a failed fetch keeps the current tools."""
        self.discovery_service.invalidate_cache()
        return await self.refresh_workflows()

    async def _refresh(self) -> RefreshSummary:
        summary = RefreshSummary()

        self.state = RefreshState.DISCOVERING
        try:
            discovered = await self.discovery_service.list_workflows()
        except Exception as e:
            self.error_handler.handle_discovery_error(e)
            summary.errors += 1
            return summary

        self.state = RefreshState.DIFFING
        incoming = {w.id: w for w in discovered}
        to_add = [w for wid, w in incoming.items() if wid not in self._workflows]
        to_update = [
            w
            for wid, w in incoming.items()
            if wid in self._workflows and _workflow_changed(self._workflows[wid], w)
        ]
        to_remove = [wid for wid in self._workflows if wid not in incoming]
        summary.unchanged = len(incoming) - len(to_add) - len(to_update)

        self.state = RefreshState.APPLYING
        for workflow_id in to_remove:
            self._remove_workflow(workflow_id)
            summary.removed += 1

        for workflow in to_update:
            self._remove_workflow(workflow.id)
            if self._register_workflow(workflow):
                summary.updated += 1
            else:
                summary.errors += 1

        for workflow in to_add:
            if self._register_workflow(workflow):
                summary.added += 1
            else:
                summary.errors += 1

        self._last_refresh_time = time.time() * 1000
        self.logger.info(
            f"Workflow refresh complete: {summary.added} added, {summary.updated} updated, "
            f"{summary.removed} removed, {summary.unchanged} unchanged, {summary.errors} errors"
        )
        return summary

    def _register_workflow(self, workflow: WorkflowDefinition) -> bool:
        try:
            tool = self.tool_generator.convert_workflow_to_tool(
                workflow, self.registry.get_tool_names()
            )
            self.registry.register_tool(tool)
        except Exception as e:
            self.error_handler.handle_tool_generation_error(e, workflow)
            return False

        self._workflows[workflow.id] = workflow
        self._tool_names[workflow.id] = tool.name
        return True

    def _remove_workflow(self, workflow_id: str) -> None:
        tool_name = self._tool_names.pop(workflow_id, None)
        self._workflows.pop(workflow_id, None)
        if tool_name is not None:
            self.registry.unregister_tool(tool_name)

    async def shutdown(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

        await self.execution_service.shutdown()

        for workflow_id in list(self._workflows):
            self._remove_workflow(workflow_id)
        self.state = RefreshState.IDLE
        self.logger.info("Workflow tool manager shut down")

    def get_registered_workflow_count(self) -> int:
        return len(self._tool_names)

    def get_workflow_tool_names(self) -> List[str]:
        return list(self._tool_names.values())

    def get_workflow_by_id(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def get_all_workflows(self) -> List[WorkflowDefinition]:
        return list(self._workflows.values())

    def get_refresh_status(self) -> Dict[str, Any]:
        interval = self.config.workflow_discovery_interval
        now = time.time() * 1000
        refresh_age = (
            now - self._last_refresh_time if self._last_refresh_time is not None else None
        )
        status: Dict[str, Any] = {
            "enabled": self.is_enabled(),
            "last_refresh_time": self._last_refresh_time,
            "refresh_age": refresh_age,
            "auto_refresh_enabled": self._refresh_task is not None,
            "auto_refresh_interval": interval,
        }
        if self._refresh_task is not None and refresh_age is not None:
            status["next_refresh_in"] = max(0, interval - refresh_age)
        return status

    def get_discovery_cache_stats(self) -> Dict[str, Any]:
        return self.discovery_service.get_cache_stats()

    def get_performance_stats(self, window_ms: Optional[int] = None) -> Dict[str, Any]:
        return self.execution_service.get_performance_stats(window_ms)
