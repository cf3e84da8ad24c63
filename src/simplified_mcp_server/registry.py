"""Tool registry shared by static and dynamically generated workflow tools."""

import json
import logging
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .errors import AppError, ErrorType, MissingParameterError, ToolNotFoundError
from .models import ToolDefinition, text_response

logger = logging.getLogger(__name__)

ALLOWED_PROPERTY_TYPES = ("string", "number", "integer", "boolean", "array", "object")


def _validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> AppError:
    return AppError(ErrorType.VALIDATION_ERROR, message, details)


def validate_tool_definition(tool: ToolDefinition) -> None:
    """Structurally validate a tool before it is registered."""
    if not isinstance(tool.name, str) or not tool.name.strip():
        raise _validation_error("Tool name must be a non-empty string")
    if not isinstance(tool.description, str) or not tool.description.strip():
        raise _validation_error(f"Tool '{tool.name}' must have a description")
    if not callable(tool.handler):
        raise _validation_error(f"Tool '{tool.name}' handler must be callable")

    schema = tool.input_schema
    if not isinstance(schema, dict) or schema.get("type") != "object":
        raise _validation_error(f"Tool '{tool.name}' input schema must be of type 'object'")
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        raise _validation_error(f"Tool '{tool.name}' input schema must define properties")

    for prop_name, prop in properties.items():
        if not isinstance(prop, dict):
            raise _validation_error(
                f"Tool '{tool.name}' property '{prop_name}' must be an object"
            )
        prop_type = prop.get("type")
        if prop_type is not None and prop_type not in ALLOWED_PROPERTY_TYPES:
            raise _validation_error(
                f"Tool '{tool.name}' property '{prop_name}' has invalid type '{prop_type}'"
            )

    required = schema.get("required", [])
    if not isinstance(required, list):
        raise _validation_error(f"Tool '{tool.name}' required field must be a list")
    for name in required:
        if name not in properties:
            raise _validation_error(
                f"Tool '{tool.name}' requires undeclared property '{name}'"
            )

    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        raise _validation_error(
            f"Tool '{tool.name}' input schema is not valid JSON Schema: {e.message}"
        ) from e


def normalize_tool_response(result: Any) -> Dict[str, Any]:
    """Coerce a handler return value into the MCP text content shape."""
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        return result
    if isinstance(result, str):
        return text_response(result)
    return text_response(json.dumps(result, indent=2, default=str))


class ToolRegistry:
    """Name-keyed registry of tool definitions."""

    def __init__(self):
        self._tools: Dict[str, ToolDefinition] = {}

    def register_tool(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise _validation_error(
                f"Tool '{tool.name}' is already registered", {"toolName": tool.name}
            )
        validate_tool_definition(tool)
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name} (category: {tool.category})")

    def unregister_tool(self, name: str) -> bool:
        tool = self._tools.pop(name, None)
        if tool is None:
            return False
        logger.debug(f"Unregistered tool: {name}")
        return True

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def validate_tool_parameters(self, name: str, arguments: Any) -> Dict[str, Any]:
        """Validate call arguments against a tool's input schema.

        Returns the arguments as a dict. Missing required parameters raise
        ``MissingParameterError``; any other mismatch raises a validation
        ``AppError``.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise _validation_error(
                f"Arguments for tool '{name}' must be an object", {"toolName": name}
            )

        for required in tool.input_schema.get("required", []):
            if required not in arguments:
                raise MissingParameterError(required, name)

        validator = Draft7Validator(tool.input_schema)
        errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            messages = []
            for error in errors:
                location = ".".join(str(p) for p in error.path)
                messages.append(f"{location}: {error.message}" if location else error.message)
            raise _validation_error(
                f"Invalid parameters for tool '{name}': {'; '.join(messages)}",
                {"toolName": name, "errors": messages},
            )
        return arguments

    async def execute_tool(
        self, name: str, arguments: Any, api_client: Any
    ) -> Dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        arguments = self.validate_tool_parameters(name, arguments)
        logger.info(f"Executing tool: {name}")
        try:
            result = await tool.handler(arguments, api_client)
        except Exception as e:
            raise AppError(
                ErrorType.TOOL_ERROR,
                f"Error executing tool '{name}': {e}",
                {"toolName": name, "originalError": str(e)},
                getattr(e, "status", None),
            ) from e
        return normalize_tool_response(result)

    def get_available_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_mcp() for tool in self._tools.values()]

    def get_tools_by_category(self, category: str) -> List[ToolDefinition]:
        return [t for t in self._tools.values() if t.category == category]

    def get_categories(self) -> List[str]:
        categories: List[str] = []
        for tool in self._tools.values():
            if tool.category and tool.category not in categories:
                categories.append(tool.category)
        return categories

    def get_tool_count(self) -> int:
        return len(self._tools)

    def get_tool_names(self) -> List[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    def generate_documentation(self) -> str:
        """Render the registered tools as markdown, grouped by category."""
        lines = ["# Simplified MCP Server Tools Documentation", ""]
        grouped: Dict[str, List[ToolDefinition]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.category or "General Tools", []).append(tool)

        for category, tools in grouped.items():
            lines.append(f"## {category}")
            lines.append("")
            for tool in tools:
                lines.extend(_tool_documentation(tool))
        return "\n".join(lines)


def _tool_documentation(tool: ToolDefinition) -> List[str]:
    lines = [f"### {tool.name}", "", tool.description, ""]
    if tool.version:
        lines.extend([f"**Version:** {tool.version}", ""])

    properties = tool.input_schema.get("properties") or {}
    required = tool.input_schema.get("required") or []
    if not properties:
        lines.extend(["**Parameters:** None", ""])
        return lines

    lines.append("**Parameters:**")
    lines.append("")
    for name, schema in properties.items():
        flag = "required" if name in required else "optional"
        param_type = schema.get("type", "any")
        description = schema.get("description", "No description")
        lines.append(f"- `{name}` ({param_type}) ({flag}): {description}")
        if schema.get("enum"):
            lines.append(f"  - Allowed values: {', '.join(str(v) for v in schema['enum'])}")
        constraints = [
            f"{label}: {schema[key]}"
            for key, label in (
                ("minLength", "min length"),
                ("maxLength", "max length"),
                ("minimum", "minimum"),
                ("maximum", "maximum"),
                ("pattern", "pattern"),
            )
            if key in schema
        ]
        if constraints:
            lines.append(f"  - Constraints: {', '.join(constraints)}")
    lines.append("")
    return lines
