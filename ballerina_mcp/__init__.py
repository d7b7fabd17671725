"""
Ballerina MCP Server - Model Context Protocol server for Ballerina tooling.

Exposes Ballerina project tools, workspace resources and prompt templates
to MCP clients over WebSocket or stdio.
"""

from .config import ServerConfig
from .gateway import ConnectionGateway
from .prompts import PromptHandler
from .protocol import (
    MCPError,
    MCPErrorCode,
    MCPException,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    PromptArgument,
    PromptTemplate,
    Resource,
    ResourceContent,
    ServerCapabilities,
    ToolResult,
)
from .resources import (
    FileResourceProvider,
    MemoryResourceProvider,
    ResourceManager,
    ResourceProvider,
)
from .router import RequestRouter
from .server import MCPServer, create_server
from .session import Session, SessionManager, SessionState
from .tools import (
    BaseTool,
    JSONSchemaValidator,
    SchemaValidationError,
    Tool,
    ToolParameter,
    ToolRegistry,
)
from .transport import (
    Connection,
    StdioConnection,
    WebSocketConnection,
)

__version__ = "0.1.0"

__all__ = [
    # Protocol
    "MCPError",
    "MCPErrorCode",
    "MCPException",
    "MCPNotification",
    "MCPRequest",
    "MCPResponse",
    "PromptArgument",
    "PromptTemplate",
    "Resource",
    "ResourceContent",
    "ServerCapabilities",
    "ToolResult",
    # Server
    "MCPServer",
    "ServerConfig",
    "create_server",
    "RequestRouter",
    "ConnectionGateway",
    "Session",
    "SessionManager",
    "SessionState",
    # Tools
    "BaseTool",
    "JSONSchemaValidator",
    "SchemaValidationError",
    "Tool",
    "ToolParameter",
    "ToolRegistry",
    # Resources and prompts
    "FileResourceProvider",
    "MemoryResourceProvider",
    "ResourceManager",
    "ResourceProvider",
    "PromptHandler",
    # Transport
    "Connection",
    "StdioConnection",
    "WebSocketConnection",
]
