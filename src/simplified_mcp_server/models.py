"""Data models shared by the workflow services and the tool registry."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

DEFAULT_WORKFLOW_PARAMETERS: Dict[str, Any] = {
    "parameters": {
        "type": "object",
        "description": "Workflow parameters",
        "additionalProperties": True,
    }
}


class ExecutionStatus(str, Enum):
    """Run states reported by the remote workflow service."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
)


class InputSchema(BaseModel):
    """Object-typed JSON Schema describing a workflow's inputs."""

    type: str = "object"
    properties: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    is_default: bool = Field(default=False, exclude=True)

    @classmethod
    def default(cls) -> "InputSchema":
        return cls(
            properties={k: dict(v) for k, v in DEFAULT_WORKFLOW_PARAMETERS.items()},
            required=[],
            is_default=True,
        )

    @classmethod
    def from_remote(cls, raw: Any) -> "InputSchema":
        """Validate a remote ``inputs`` object, falling back to the default schema.

        Anything that is not an object schema with a ``properties`` mapping is
        replaced by a single free-form ``parameters`` object.
        """
        if (
            not isinstance(raw, dict)
            or raw.get("type") != "object"
            or not isinstance(raw.get("properties"), dict)
        ):
            return cls.default()

        properties = {
            name: dict(prop) if isinstance(prop, dict) else {}
            for name, prop in raw["properties"].items()
        }
        required = raw.get("required")
        if not isinstance(required, list):
            required = []
        required = [r for r in required if isinstance(r, str)]

        return cls(properties=properties, required=required)

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": self.type,
            "properties": {k: dict(v) for k, v in self.properties.items()},
        }
        if self.required:
            schema["required"] = list(self.required)
        return schema


class WorkflowMetadata(BaseModel):
    original_id: Any = None
    original_title: Optional[str] = None
    original_inputs: Any = None
    source: str = "simplified-api"


class WorkflowDefinition(BaseModel):
    """A remote workflow transformed into a tool-ready definition."""

    id: str
    name: str
    description: str
    category: str = "workflow"
    version: str = "1.0.0"
    input_schema: InputSchema = Field(default_factory=InputSchema.default)
    execution_type: str = "async"
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)


class WorkflowStatus(BaseModel):
    """One status snapshot of a workflow run."""

    create_time: float
    update_time: float
    start_time: float
    end_time: Optional[float] = None
    status: ExecutionStatus
    workflow_id: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    workflow_instance_id: str
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def execution_duration(self) -> Optional[float]:
        if self.end_time is not None and self.start_time is not None:
            return self.end_time - self.start_time
        return None


class WorkflowExecutionResult(BaseModel):
    """Outcome of one ``execute_workflow`` call."""

    success: bool
    correlation_id: str = ""
    workflow_instance_id: str = ""
    original_workflow_id: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING
    error: Optional[str] = None
    execution_duration: Optional[float] = None
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    create_time: Optional[float] = None
    update_time: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


ToolHandler = Callable[[Dict[str, Any], Any], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """A callable tool as exposed to MCP clients. Identity is ``name``."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler
    category: Optional[str] = None
    version: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_mcp(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def text_response(text: str, is_error: bool = False) -> Dict[str, Any]:
    """Build an MCP tool call response carrying a single text item."""
    response: Dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        response["isError"] = True
    return response
