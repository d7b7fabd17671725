"""
MCP Protocol definitions.

JSON-RPC 2.0 envelopes, the error taxonomy and the descriptor types
exchanged by the Ballerina MCP server.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


class MCPErrorCode(Enum):
    """Protocol and application error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_ERROR = -32000
    # Application codes
    BALLERINA_NOT_FOUND = 1001
    BUILD_FAILED = 1002
    TEST_FAILED = 1003
    DEPENDENCY_CONFLICT = 1004
    PROJECT_NOT_FOUND = 2001
    RESOURCE_NOT_FOUND = 2002
    AUTHENTICATION_FAILED = 3001
    AUTHORIZATION_FAILED = 3002


@dataclass
class MCPError:
    """MCP Error object."""
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_code(cls, code: MCPErrorCode, message: str, data: Any = None) -> "MCPError":
        return cls(code=code.value, message=message, data=data)

    @classmethod
    def from_dict(cls, data: dict) -> "MCPError":
        return cls(
            code=data.get("code", MCPErrorCode.INTERNAL_ERROR.value),
            message=data.get("message", ""),
            data=data.get("data"),
        )

    def to_dict(self) -> dict:
        result = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


class MCPException(Exception):
    """
    A deliberate protocol error.

    Raised by handlers and server components; the router passes it through
    unchanged and the server turns it into an error envelope.
    """

    def __init__(self, code: Union[MCPErrorCode, int], message: str, data: Any = None):
        super().__init__(message)
        self.code = code.value if isinstance(code, MCPErrorCode) else code
        self.message = message
        self.data = data

    def to_error(self) -> MCPError:
        return MCPError(code=self.code, message=self.message, data=self.data)

    def __repr__(self) -> str:
        return f"MCPException(code={self.code}, message={self.message!r})"


@dataclass
class MCPMessage:
    """Base MCP message."""
    jsonrpc: Optional[str] = JSONRPC_VERSION
    id: Optional[RequestId] = None

    def to_dict(self) -> dict:
        result = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            result["id"] = self.id
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "MCPMessage":
        return cls(
            jsonrpc=data.get("jsonrpc"),
            id=data.get("id"),
        )


@dataclass
class MCPRequest(MCPMessage):
    """MCP Request message."""
    method: Any = ""
    params: Optional[Any] = None

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["method"] = self.method
        if self.params is not None:
            result["params"] = self.params
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "MCPRequest":
        # jsonrpc is left as received so the router can reject bad versions
        return cls(
            jsonrpc=data.get("jsonrpc"),
            id=data.get("id"),
            method=data.get("method", ""),
            params=data.get("params"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "MCPRequest":
        return cls.from_dict(json.loads(json_str))


@dataclass
class MCPResponse(MCPMessage):
    """MCP Response message. Exactly one of result/error is serialized."""
    result: Optional[Any] = None
    error: Optional[MCPError] = None

    def to_dict(self) -> dict:
        result = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["result"] = self.result
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "MCPResponse":
        error = data.get("error")
        return cls(
            jsonrpc=data.get("jsonrpc"),
            id=data.get("id"),
            result=data.get("result"),
            error=MCPError.from_dict(error) if error is not None else None,
        )

    @classmethod
    def success(cls, id: Optional[RequestId], result: Any) -> "MCPResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: Optional[RequestId], error: MCPError) -> "MCPResponse":
        return cls(id=id, error=error)


@dataclass
class MCPNotification:
    """Server-to-client message without an id."""
    method: str
    params: Optional[Any] = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict:
        result = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            result["params"] = self.params
        return result


@dataclass
class ToolResult:
    """
    Outcome of a tool, prompt or similar typed operation.

    Operation failures travel as data (success=False plus error) rather
    than as protocol errors.

    Keys a handler returns beyond success, result and error are kept in
    ``extra`` and serialized alongside them.
    """
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"success": self.success}
        data.update(self.extra)
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def ok(cls, result: Any = None) -> "ToolResult":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str, result: Any = None) -> "ToolResult":
        return cls(success=False, result=result, error=error)


@dataclass
class Resource:
    """Resource descriptor returned by providers."""
    uri: str
    name: str
    description: Optional[str] = None
    mime_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {"uri": self.uri, "name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        if self.metadata:
            result["metadata"] = self.metadata
        return result


@dataclass
class ResourceContent:
    """Content of a single resource."""
    uri: str
    data: Any
    mime_type: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"uri": self.uri, "data": self.data}
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class PromptArgument:
    """Prompt template argument."""
    name: str
    description: Optional[str] = None
    required: bool = False
    default: Optional[Any] = None

    def to_dict(self) -> dict:
        result = {"name": self.name, "required": self.required}
        if self.description is not None:
            result["description"] = self.description
        if self.default is not None:
            result["default"] = self.default
        return result


@dataclass
class PromptTemplate:
    """Named prompt template with {placeholder} arguments."""
    id: str
    name: str
    template: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = field(default_factory=list)
    examples: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            "id": self.id,
            "name": self.name,
            "arguments": [a.to_dict() for a in self.arguments],
            "template": self.template,
        }
        if self.description is not None:
            result["description"] = self.description
        if self.examples:
            result["examples"] = self.examples
        return result


@dataclass
class ServerCapabilities:
    """Capabilities advertised in the initialize result."""
    tools: Dict[str, bool] = field(
        default_factory=lambda: {"list": True, "call": True}
    )
    resources: Dict[str, bool] = field(
        default_factory=lambda: {"list": True, "read": True, "write": True, "watch": True}
    )
    prompts: Dict[str, bool] = field(
        default_factory=lambda: {"list": True, "get": True, "render": True}
    )

    def to_dict(self) -> dict:
        return {
            "tools": dict(self.tools),
            "resources": dict(self.resources),
            "prompts": dict(self.prompts),
        }


def parse_message(data: Union[str, bytes, dict]) -> dict:
    """
    Decode a raw frame into a JSON object.

    Raises:
        MCPException: PARSE_ERROR for undecodable input or a non-object.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MCPException(MCPErrorCode.PARSE_ERROR, f"Invalid JSON: {e}")

    if not isinstance(data, dict):
        raise MCPException(MCPErrorCode.PARSE_ERROR, "Message must be a JSON object")

    return data
