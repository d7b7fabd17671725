"""
MCP Tools implementation.

Tool definitions, argument validation and the tool registry.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .protocol import ToolResult


logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class SchemaValidationError(Exception):
    """Arguments did not satisfy a tool's schema."""

    def __init__(self, messages: List[str]):
        super().__init__(", ".join(messages))
        self.messages = messages


class SchemaValidator(Protocol):
    """Validates tool arguments against a declared schema."""

    def validate(self, arguments: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
        """Return validated (possibly coerced) arguments or raise SchemaValidationError."""
        ...


class JSONSchemaValidator:
    """
    JSON Schema (draft 7) validator.

    Reports every violation, not only the first, and fills in top-level
    ``default`` values for properties the caller left out.
    """

    def validate(self, arguments: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
        if arguments is None:
            arguments = {}

        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as e:
            raise SchemaValidationError([f"Invalid schema: {e.message}"])

        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            raise SchemaValidationError([self._format(e) for e in errors])

        return self._apply_defaults(arguments, schema)

    @staticmethod
    def _format(error) -> str:
        if error.path:
            location = ".".join(str(p) for p in error.path)
            return f"{location}: {error.message}"
        return error.message

    @staticmethod
    def _apply_defaults(arguments: Any, schema: Dict[str, Any]) -> Any:
        if not isinstance(arguments, dict):
            return arguments

        validated = dict(arguments)
        for name, prop in schema.get("properties", {}).items():
            if name not in validated and isinstance(prop, dict) and "default" in prop:
                validated[name] = deepcopy(prop["default"])
        return validated


@dataclass
class ToolParameter:
    """Tool parameter definition."""
    name: str
    type: str
    description: str
    required: bool = False
    default: Optional[Any] = None
    enum: Optional[List[Any]] = None
    items: Optional[Dict[str, Any]] = None

    def to_json_schema(self) -> dict:
        """Convert to JSON schema property."""
        schema = {
            "type": self.type,
            "description": self.description,
        }
        if self.enum is not None:
            schema["enum"] = self.enum
        if self.default is not None:
            schema["default"] = self.default
        if self.items is not None:
            schema["items"] = self.items
        return schema


def build_input_schema(parameters: List[ToolParameter]) -> Dict[str, Any]:
    """Object schema for a list of parameters."""
    properties = {}
    required = []

    for param in parameters:
        properties[param.name] = param.to_json_schema()
        if param.required:
            required.append(param.name)

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


@dataclass
class Tool:
    """A registered tool: public descriptor plus handler and validation schema."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler
    validation_schema: Optional[Dict[str, Any]] = None

    @property
    def schema(self) -> Dict[str, Any]:
        """Schema arguments are validated against."""
        return self.validation_schema if self.validation_schema is not None else self.input_schema

    def to_dict(self) -> dict:
        """Public descriptor; the handler and validation schema stay private."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class BaseTool(ABC):
    """Base class for tools written as classes."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> List[ToolParameter]:
        """Tool parameters."""
        pass

    @abstractmethod
    def execute(self, **kwargs) -> Union[ToolResult, Awaitable[ToolResult]]:
        """Execute the tool with validated arguments."""
        pass

    def as_tool(self) -> Tool:
        """Registry entry for this tool."""
        return Tool(
            name=self.name,
            description=self.description,
            input_schema=build_input_schema(self.parameters),
            handler=lambda args: self.execute(**args),
        )


class ToolRegistry:
    """Registry for managing and invoking tools."""

    def __init__(self, validator: Optional[SchemaValidator] = None):
        self.validator = validator or JSONSchemaValidator()
        self.tools: Dict[str, Tool] = {}

    def register(self, tool: Union[Tool, BaseTool]) -> None:
        """Register a tool. A duplicate name replaces the earlier tool."""
        if isinstance(tool, BaseTool):
            tool = tool.as_tool()

        if tool.name in self.tools:
            logger.warning(f"Overwriting existing tool: {tool.name}")

        self.tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")

    def unregister(self, name: str) -> bool:
        """Unregister a tool by name."""
        if name in self.tools:
            del self.tools[name]
            return True
        return False

    def get(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    def list(self) -> List[dict]:
        """Public descriptors of every registered tool."""
        return [tool.to_dict() for tool in self.tools.values()]

    def clear(self) -> None:
        self.tools.clear()

    def __len__(self) -> int:
        return len(self.tools)

    async def call(self, name: str, args: Optional[Dict[str, Any]]) -> ToolResult:
        """
        Validate arguments and run a tool.

        Failures are reported in the returned ToolResult, never raised.
        """
        tool = self.get(name)
        if tool is None:
            return ToolResult.fail(f"Tool not found: {name}")

        try:
            validated = self.validator.validate(args if args is not None else {}, tool.schema)
            if inspect.isawaitable(validated):
                validated = await validated
        except SchemaValidationError as e:
            logger.info(f"Tool {name} rejected arguments: {e}")
            return ToolResult.fail(f"Invalid arguments: {', '.join(e.messages)}")
        except Exception as e:
            logger.error(f"Validating arguments for tool {name} failed: {e}", exc_info=True)
            return ToolResult.fail(f"Argument validation failed: {str(e) or type(e).__name__}")

        try:
            result = tool.handler(validated)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Tool {name} execution failed: {e}", exc_info=True)
            return ToolResult.fail(str(e) or "Tool execution failed")

        if isinstance(result, dict) and "success" in result:
            result = ToolResult(
                success=bool(result["success"]),
                result=result.get("result"),
                error=result.get("error"),
                extra={k: v for k, v in result.items() if k not in ("success", "result", "error")},
            )
        elif not isinstance(result, ToolResult):
            result = ToolResult.ok(result)

        logger.info(f"Tool {name} finished (success={result.success})")
        return result
