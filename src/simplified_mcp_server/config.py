"""Configuration management for the Simplified MCP Server.

Configuration comes from environment variables, optionally layered on top of
a YAML file. Values are validated with pydantic; a missing API token or an
out-of-range value is reported as a single ``ConfigurationError`` listing
every problem, which is the only error that stops the server from starting.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

DEFAULT_API_BASE_URL = "https://api.simplified.com"

# Environment variable -> config field
ENV_VARS: Dict[str, str] = {
    "SIMPLIFIED_API_TOKEN": "api_token",
    "SIMPLIFIED_API_BASE_URL": "api_base_url",
    "LOG_LEVEL": "log_level",
    "REQUEST_TIMEOUT": "timeout",
    "RETRY_ATTEMPTS": "retry_attempts",
    "RETRY_DELAY": "retry_delay",
    "WORKFLOWS_ENABLED": "workflows_enabled",
    "WORKFLOW_DISCOVERY_INTERVAL": "workflow_discovery_interval",
    "WORKFLOW_EXECUTION_TIMEOUT": "workflow_execution_timeout",
    "WORKFLOW_MAX_CONCURRENT_EXECUTIONS": "workflow_max_concurrent_executions",
    "WORKFLOW_FILTER_PATTERNS": "workflow_filter_patterns",
    "WORKFLOW_STATUS_CHECK_INTERVAL": "workflow_status_check_interval",
    "WORKFLOW_RETRY_ATTEMPTS": "workflow_retry_attempts",
}

OPTIONAL_ENV_DEFAULTS: Dict[str, Any] = {
    "SIMPLIFIED_API_BASE_URL": DEFAULT_API_BASE_URL,
    "LOG_LEVEL": "info",
    "REQUEST_TIMEOUT": 30000,
    "RETRY_ATTEMPTS": 3,
    "RETRY_DELAY": 1000,
    "WORKFLOWS_ENABLED": False,
    "WORKFLOW_DISCOVERY_INTERVAL": 0,
    "WORKFLOW_EXECUTION_TIMEOUT": 300000,
    "WORKFLOW_MAX_CONCURRENT_EXECUTIONS": 10,
    "WORKFLOW_FILTER_PATTERNS": "",
    "WORKFLOW_STATUS_CHECK_INTERVAL": 5000,
    "WORKFLOW_RETRY_ATTEMPTS": 3,
}


class WorkflowDiscoveryConfig(BaseModel):
    """Settings consumed by the workflow discovery service."""

    enabled: bool = True
    filter_patterns: List[str] = Field(default_factory=list)
    cache_validity_ms: int = Field(default=60000, ge=0)


class WorkflowExecutionConfig(BaseModel):
    """Settings consumed by the workflow execution service."""

    execution_timeout: int = Field(default=300000, gt=0)
    status_check_interval: int = Field(default=5000, gt=0)
    max_concurrent_executions: int = Field(default=10, ge=1)
    retry_attempts: int = Field(default=3, ge=0)


class Config(BaseModel):
    """Main configuration class."""

    config_path: Optional[str] = Field(
        default=None, description="Path to the loaded config file"
    )

    api_token: str = Field(..., min_length=1, description="Simplified API token")
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    log_level: str = Field(default="info")
    timeout: int = Field(default=30000, gt=0, description="Request timeout (ms)")
    retry_attempts: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=1000, gt=0, description="Base retry delay (ms)")

    workflows_enabled: bool = Field(default=False)
    workflow_discovery_interval: int = Field(
        default=0, ge=0, le=86400000, description="Auto-refresh interval (ms), 0 disables"
    )
    workflow_execution_timeout: int = Field(default=300000, ge=1000, le=3600000)
    workflow_max_concurrent_executions: int = Field(default=10, ge=1, le=100)
    workflow_filter_patterns: List[str] = Field(default_factory=list)
    workflow_status_check_interval: int = Field(default=5000, ge=1000, le=300000)
    workflow_retry_attempts: int = Field(default=3, ge=0, le=10)

    @field_validator("api_base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warn", "warning", "error"):
            raise ValueError("must be one of debug, info, warn, error")
        return value

    @field_validator("workflow_filter_patterns")
    @classmethod
    def _check_filter_patterns(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            if not pattern:
                raise ValueError("filter patterns cannot be empty strings")
            if pattern.strip() != pattern:
                raise ValueError(
                    "filter patterns cannot have leading or trailing whitespace"
                )
        return patterns

    @classmethod
    def from_env(
        cls,
        environ: Optional[Dict[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "Config":
        """Build configuration from environment variables."""
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = dict(overrides or {})
        for env_name, field_name in ENV_VARS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            data[field_name] = _parse_env_value(field_name, raw)
        return cls._validate(data)

    @classmethod
    def load(
        cls, config_path: str, environ: Optional[Dict[str, str]] = None
    ) -> "Config":
        """Load configuration from a YAML file, then apply environment overrides."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {config_path}"
            )

        config = cls.from_env(environ=environ, overrides=config_data)
        config.config_path = config_path
        return config

    @classmethod
    def _validate(cls, data: Dict[str, Any]) -> "Config":
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    def save(self, config_path: str) -> None:
        """Save configuration to a YAML file (the API token is not written)."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = self.model_dump(exclude={"config_path", "api_token"})

        with open(path, "w") as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    def validate_workflow_configuration(self) -> List[str]:
        """Return advisory warnings for workflow settings that are legal but risky."""
        warnings: List[str] = []
        if not self.workflows_enabled:
            return warnings

        if 0 < self.workflow_discovery_interval < 60000:
            warnings.append(
                "WORKFLOW_DISCOVERY_INTERVAL is less than 60 seconds. Consider "
                "using a longer interval to reduce API load."
            )
        if self.workflow_execution_timeout < 30000:
            warnings.append(
                "WORKFLOW_EXECUTION_TIMEOUT is less than 30 seconds. This may "
                "cause timeouts for longer-running workflows."
            )
        if self.workflow_max_concurrent_executions > 50:
            warnings.append(
                "WORKFLOW_MAX_CONCURRENT_EXECUTIONS is very high. This may cause "
                "resource exhaustion."
            )
        if self.workflow_status_check_interval < 2000:
            warnings.append(
                "WORKFLOW_STATUS_CHECK_INTERVAL is less than 2 seconds. This may "
                "cause excessive API calls."
            )
        if self.workflow_retry_attempts > 5:
            warnings.append(
                "WORKFLOW_RETRY_ATTEMPTS is high. This may cause long delays on failures."
            )
        if self.workflow_filter_patterns and not any(
            "*" in p or "?" in p for p in self.workflow_filter_patterns
        ):
            warnings.append(
                "WORKFLOW_FILTER_PATTERNS contains no wildcards. Consider using "
                'patterns like "prefix-*" for flexibility.'
            )
        return warnings

    def discovery_config(self) -> WorkflowDiscoveryConfig:
        return WorkflowDiscoveryConfig(
            enabled=self.workflows_enabled,
            filter_patterns=list(self.workflow_filter_patterns),
        )

    def execution_config(self) -> WorkflowExecutionConfig:
        return WorkflowExecutionConfig(
            execution_timeout=self.workflow_execution_timeout,
            status_check_interval=self.workflow_status_check_interval,
            max_concurrent_executions=self.workflow_max_concurrent_executions,
            retry_attempts=self.workflow_retry_attempts,
        )

    @staticmethod
    def get_required_environment_variables() -> List[str]:
        return ["SIMPLIFIED_API_TOKEN"]

    @staticmethod
    def get_optional_environment_variables() -> Dict[str, Any]:
        return dict(OPTIONAL_ENV_DEFAULTS)


def _parse_env_value(field_name: str, raw: str) -> Any:
    raw = raw.strip()
    if field_name == "workflows_enabled":
        return raw.lower() == "true"
    if field_name == "workflow_filter_patterns":
        return [p.strip() for p in raw.split(",") if p.strip()]
    if field_name in ("api_token", "api_base_url", "log_level"):
        return raw
    # Numeric settings; leave unparsable values for pydantic to reject
    try:
        return int(raw)
    except ValueError:
        return raw


def _format_validation_error(error: ValidationError) -> str:
    missing: List[str] = []
    invalid: List[str] = []
    env_by_field = {field: env for env, field in ENV_VARS.items()}

    for err in error.errors():
        field = ".".join(str(p) for p in err["loc"]) or "config"
        name = env_by_field.get(field, field)
        if err["type"] == "missing":
            missing.append(name)
        else:
            invalid.append(f"{name}: {err['msg']}")

    lines = ["Configuration validation failed:"]
    if missing:
        lines.append(f"Missing required environment variables: {', '.join(missing)}")
    if invalid:
        lines.append(f"Invalid configuration values: {', '.join(invalid)}")
    lines.append("")
    lines.append("Required environment variables:")
    lines.append("- SIMPLIFIED_API_TOKEN: Your Simplified API token")
    lines.append("")
    lines.append("Optional environment variables:")
    for env_name, default in OPTIONAL_ENV_DEFAULTS.items():
        lines.append(f"- {env_name} (default: {default!r})")
    return "\n".join(lines)
