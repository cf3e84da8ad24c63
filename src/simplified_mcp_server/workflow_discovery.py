"""Discovery of remote workflows and their transformation into definitions.

The workflow list is cached for ``cache_validity_ms``. A failed fetch never
raises: the previous list is served if there is one, otherwise an empty list.
"""

import logging
import re
import time
from typing import Any, Callable, List, Optional, Union

from .config import Config, WorkflowDiscoveryConfig
from .errors import AppError, ErrorType
from .models import InputSchema, WorkflowDefinition, WorkflowMetadata
from .workflow_errors import WorkflowErrorHandler

WORKFLOWS_LIST_ENDPOINT = "/api/v1/service/workflows/mcp"
MAX_WORKFLOW_NAME_LENGTH = 50


def sanitize_workflow_name(title: str) -> str:
    """Turn a workflow title into a name matching ``^[a-z][a-z0-9_-]*$``."""
    name = (title or "").lower().strip()
    name = re.sub(r"[^a-z0-9\s_-]", "", name)
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name)
    name = name.strip("-")

    if not name:
        name = "unnamed-workflow"
    elif not name[0].isalpha():
        name = f"workflow-{name}"

    if len(name) > MAX_WORKFLOW_NAME_LENGTH:
        name = name[:MAX_WORKFLOW_NAME_LENGTH].rstrip("-_")
    return name


def _pattern_to_regex(pattern: str) -> "re.Pattern[str]":
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts), re.IGNORECASE)


def matches_filter(name: str, patterns: Optional[List[str]]) -> bool:
    """True if ``name`` matches any pattern, or if there are no patterns.

    Patterns containing ``*`` are case-insensitive globs matched against the
    whole name; other patterns are case-insensitive substrings.
    """
    if not patterns:
        return True
    for pattern in patterns:
        if "*" in pattern:
            if _pattern_to_regex(pattern).fullmatch(name):
                return True
        elif pattern.lower() in name.lower():
            return True
    return False


def transform_workflow(raw: Any) -> WorkflowDefinition:
    """Convert one raw API workflow entry into a ``WorkflowDefinition``."""
    if not isinstance(raw, dict):
        raise AppError(
            ErrorType.VALIDATION_ERROR,
            f"Workflow entry must be an object, got {type(raw).__name__}",
        )

    raw_id = raw.get("id")
    workflow_id = str(raw_id) if raw_id is not None and raw_id != "" else "unknown"
    title = raw.get("title") or f"Workflow {workflow_id}"
    description = raw.get("description") or f"Workflow {workflow_id}"
    if not isinstance(title, str) or not isinstance(description, str):
        raise AppError(
            ErrorType.VALIDATION_ERROR,
            f"Workflow {workflow_id} has a non-string title or description",
        )

    return WorkflowDefinition(
        id=workflow_id,
        name=sanitize_workflow_name(title),
        description=description,
        input_schema=InputSchema.from_remote(raw.get("inputs")),
        metadata=WorkflowMetadata(
            original_id=raw_id,
            original_title=raw.get("title"),
            original_inputs=raw.get("inputs"),
        ),
    )


class WorkflowDiscoveryService:
    """Lists remote workflows with caching and stale-cache fallback."""

    def __init__(
        self,
        api_client: Any,
        config: Union[WorkflowDiscoveryConfig, Config],
        logger: Optional[logging.Logger] = None,
        error_handler: Optional[WorkflowErrorHandler] = None,
        clock: Callable[[], float] = time.time,
    ):
        if isinstance(config, Config):
            config = config.discovery_config()
        self.api_client = api_client
        self.config = config
        self.logger = (logger or logging.getLogger(__name__)).getChild("WorkflowDiscovery")
        self.error_handler = error_handler or WorkflowErrorHandler(self.logger)
        self._clock = clock
        self._cache: List[WorkflowDefinition] = []
        self._last_discovery_time: Optional[float] = None
        self._expired = False

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _is_cache_valid(self) -> bool:
        if self._expired or not self._cache or self._last_discovery_time is None:
            return False
        return self._now_ms() - self._last_discovery_time < self.config.cache_validity_ms

    async def list_workflows(self) -> List[WorkflowDefinition]:
        """Return available workflows. Never raises."""
        if self._is_cache_valid():
            self.logger.debug(f"Returning {len(self._cache)} cached workflows")
            return list(self._cache)

        try:
            self.logger.info("Discovering workflows from the Simplified API")
            response = await self.api_client.get(WORKFLOWS_LIST_ENDPOINT)
            data = response.data

            if not isinstance(data, dict) or not isinstance(data.get("results"), list):
                self.logger.warning(
                    f"Unexpected workflow list response format: {type(data).__name__}"
                )
                return []

            workflows: List[WorkflowDefinition] = []
            for raw in data["results"]:
                try:
                    workflows.append(transform_workflow(raw))
                except AppError as e:
                    self.error_handler.handle_validation_error(e, raw)

            filtered = [
                w for w in workflows if matches_filter(w.name, self.config.filter_patterns)
            ]
            if len(filtered) != len(workflows):
                self.logger.debug(
                    f"Applied filters: {len(workflows)} -> {len(filtered)} workflows"
                )

            self._cache = filtered
            self._last_discovery_time = self._now_ms()
            self._expired = False
            self.logger.info(f"Discovered {len(filtered)} workflows")
            return list(filtered)

        except Exception as e:
            self.error_handler.handle_discovery_error(
                e, {"cachedCount": len(self._cache)}
            )
            if self._cache:
                self.logger.info(
                    f"Serving {len(self._cache)} stale cached workflows after discovery failure"
                )
                return list(self._cache)
            return []

    async def test_connection(self) -> bool:
        """True if the workflow list endpoint answers at all."""
        try:
            await self.api_client.get(WORKFLOWS_LIST_ENDPOINT)
            return True
        except Exception as e:
            self.logger.debug(f"Workflow list connection test failed: {e}")
            return False

    async def is_workflows_list_available(self) -> bool:
        return await self.test_connection()

    async def refresh_workflows(self) -> List[WorkflowDefinition]:
        self.invalidate_cache()
        return await self.list_workflows()

    def invalidate_cache(self) -> None:
        """Force the next ``list_workflows`` to fetch, keeping the stale list for failures."""
        self._expired = True
        self.logger.debug("Workflow cache invalidated")

    def clear_cache(self) -> None:
        self._cache = []
        self._last_discovery_time = None
        self._expired = False
        self.logger.debug("Workflow cache cleared")

    def get_cache_stats(self) -> dict:
        cache_age = (
            self._now_ms() - self._last_discovery_time
            if self._last_discovery_time is not None
            else None
        )
        return {
            "cached_count": len(self._cache),
            "last_discovery_time": self._last_discovery_time,
            "cache_age": cache_age,
            "is_valid": self._is_cache_valid(),
        }
