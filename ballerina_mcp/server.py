"""
MCP Server implementation.

Wires the connection gateway, session manager and request router together
and implements the lifecycle methods of the protocol.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Union

from .config import ServerConfig
from .gateway import ConnectionGateway
from .prompts import PromptHandler
from .protocol import (
    MCPErrorCode,
    MCPException,
    MCPRequest,
    MCPResponse,
    ServerCapabilities,
    parse_message,
)
from .resources import FileResourceProvider, ResourceManager, ResourceProvider
from .router import Middleware, RequestRouter, to_mcp_exception
from .session import Session, SessionManager, SessionState
from .tools import BaseTool, Tool, ToolRegistry
from .transport import Connection


logger = logging.getLogger(__name__)


def _params(params: Any) -> Dict[str, Any]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise MCPException(MCPErrorCode.INVALID_PARAMS, "Params must be an object")
    return params


def _require(params: Dict[str, Any], key: str, kind: type = str) -> Any:
    value = params.get(key)
    if not isinstance(value, kind) or (kind is str and not value):
        raise MCPException(
            MCPErrorCode.INVALID_PARAMS,
            f"Missing or invalid parameter: {key}",
        )
    return value


class MCPServer:
    """
    MCP Server handling connections, sessions and request dispatch.

    Every request received on a connection is answered with exactly one
    response envelope, unless its session was destroyed while the request
    was in flight.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        tools: Optional[ToolRegistry] = None,
        resources: Optional[ResourceManager] = None,
        prompts: Optional[PromptHandler] = None,
        stdin=None,
        stdout=None,
    ):
        self.config = config or ServerConfig()
        self.tools = tools or ToolRegistry()
        self.resources = resources or ResourceManager()
        self.prompts = prompts or PromptHandler()
        self.router = RequestRouter()
        self.sessions = SessionManager(self.config.default_permissions)
        self.gateway = ConnectionGateway(self.config, self, stdin=stdin, stdout=stdout)
        self._connection_sessions: Dict[str, Session] = {}
        self._background: Set[asyncio.Task] = set()
        self._running = False
        self._stopped: Optional[asyncio.Event] = None

        self._setup_routes()

    @property
    def is_running(self) -> bool:
        return self._running

    def _setup_routes(self) -> None:
        """Register built-in MCP method handlers."""
        self.router.register("initialize", self._handle_initialize, requires_initialized=False)
        self.router.register("tools/list", self._handle_list_tools)
        self.router.register("tools/call", self._handle_call_tool)
        self.router.register("resources/list", self._handle_list_resources)
        self.router.register("resources/read", self._handle_read_resource)
        self.router.register("resources/write", self._handle_write_resource)
        self.router.register("prompts/list", self._handle_list_prompts)
        self.router.register("prompts/get", self._handle_get_prompt)
        self.router.register("prompts/render", self._handle_render_prompt)
        self.router.register("shutdown", self._handle_shutdown)

    def register_tool(self, tool: Union[Tool, BaseTool]) -> None:
        self.tools.register(tool)

    def add_provider(self, scheme: str, provider: ResourceProvider) -> None:
        self.resources.add_provider(scheme, provider)

    def use(self, middleware: Middleware) -> None:
        self.router.use(middleware)

    # Method handlers

    async def _handle_initialize(self, params: Any, session: Session) -> dict:
        params = _params(params)

        async with session.lock:
            if session.state is not SessionState.UNINITIALIZED:
                raise MCPException(
                    MCPErrorCode.INVALID_REQUEST,
                    "Server already initialized",
                )

            session.transition(SessionState.INITIALIZING)
            session.context.protocol_version = params.get("protocolVersion")
            session.context.capabilities = params.get("capabilities") or {}
            session.context.client_info = params.get("clientInfo")
            session.transition(SessionState.INITIALIZED)
            session.context.initialized = True

        logger.info(
            f"Session {session.id} initialized (client: {session.context.client_info})"
        )

        return {
            "protocolVersion": self.config.protocol_version,
            "capabilities": ServerCapabilities().to_dict(),
            "serverInfo": {
                "name": self.config.name,
                "version": self.config.version,
            },
        }

    async def _handle_list_tools(self, params: Any, session: Session) -> dict:
        return {"tools": self.tools.list()}

    async def _handle_call_tool(self, params: Any, session: Session) -> dict:
        params = _params(params)
        name = _require(params, "name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}

        result = await self.tools.call(name, arguments)
        return result.to_dict()

    async def _handle_list_resources(self, params: Any, session: Session) -> dict:
        params = _params(params)
        resources = await self.resources.list(params.get("filter"))
        return {"resources": [r.to_dict() for r in resources]}

    async def _handle_read_resource(self, params: Any, session: Session) -> dict:
        uri = _require(_params(params), "uri")
        content = await self.resources.read(uri)
        return content.to_dict()

    async def _handle_write_resource(self, params: Any, session: Session) -> dict:
        params = _params(params)
        uri = _require(params, "uri")
        if "content" not in params:
            raise MCPException(MCPErrorCode.INVALID_PARAMS, "Missing or invalid parameter: content")
        written = await self.resources.write(uri, params["content"])
        return {"success": bool(written)}

    async def _handle_list_prompts(self, params: Any, session: Session) -> dict:
        return {"prompts": self.prompts.list()}

    async def _handle_get_prompt(self, params: Any, session: Session) -> dict:
        prompt_id = _require(_params(params), "id")
        return self.prompts.get(prompt_id).to_dict()

    async def _handle_render_prompt(self, params: Any, session: Session) -> dict:
        params = _params(params)
        prompt_id = _require(params, "id")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise MCPException(MCPErrorCode.INVALID_PARAMS, "Missing or invalid parameter: arguments")
        return self.prompts.render(prompt_id, arguments).to_dict()

    async def _handle_shutdown(self, params: Any, session: Session) -> dict:
        async with session.lock:
            if session.state is not SessionState.INITIALIZED:
                raise MCPException(
                    MCPErrorCode.INVALID_REQUEST,
                    "Server not initialized",
                )
            session.transition(SessionState.SHUTTING_DOWN)

        logger.info(f"Shutdown requested by session {session.id}")
        self.sessions.schedule_destroy(session.id, self.config.shutdown_grace_period)
        return {"message": "Server shutting down"}

    # Request handling

    async def handle_message(self, session: Session, data: Union[str, bytes, dict]) -> dict:
        """Process one raw message and return its response envelope."""
        try:
            message = parse_message(data)
        except MCPException as e:
            return MCPResponse.failure(None, e.to_error()).to_dict()

        request = MCPRequest.from_dict(message)
        request_id = request.id if isinstance(request.id, (str, int)) and not isinstance(request.id, bool) else None

        logger.debug(f"Handling request: {request.method} (id={request_id})")

        try:
            result = await self.router.process(request, session)
            return MCPResponse.success(request_id, result).to_dict()
        except Exception as e:
            error = to_mcp_exception(e)
            if error.code == MCPErrorCode.INTERNAL_ERROR.value:
                logger.error(f"Request {request.method} failed: {error.message}")
            return MCPResponse.failure(request_id, error.to_error()).to_dict()

    # Gateway events

    def on_connection(self, connection: Connection) -> None:
        session = self.sessions.create(connection)
        self._connection_sessions[connection.id] = session

    async def on_request(self, connection: Connection, message: dict) -> None:
        session = self._connection_sessions.get(connection.id)
        if session is None:
            logger.warning(f"Dropping message for unknown connection {connection.id}")
            return

        response = await self.handle_message(session, message)

        if session.id not in self.sessions:
            logger.debug(f"Discarding response {response.get('id')!r}: session {session.id} destroyed")
            return

        await self._send(connection, response)

    async def on_invalid(self, connection: Connection, error: MCPException) -> None:
        await self._send(connection, MCPResponse.failure(None, error.to_error()).to_dict())

    async def on_close(self, connection: Connection) -> None:
        session = self._connection_sessions.pop(connection.id, None)
        if session is not None:
            await self.sessions.destroy(session.id)

        if connection.transport_kind == "stdio" and self._running:
            # stdin reached EOF: nothing else can arrive
            task = asyncio.create_task(self.shutdown())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _send(self, connection: Connection, envelope: dict) -> None:
        try:
            await connection.send(envelope)
        except Exception:
            logger.exception(f"Failed to send response on {connection.id}")

    # Lifecycle

    async def start(self) -> None:
        """Start accepting connections."""
        if self._running:
            raise RuntimeError("Server is already running")

        self.config.validate()
        self._stopped = asyncio.Event()
        await self.gateway.start()
        self._running = True
        logger.info(f"MCP Server {self.config.name} v{self.config.version} started ({self.config.transport})")

    async def shutdown(self) -> None:
        """Destroy all sessions and stop the gateway. No-op when stopped."""
        if not self._running:
            return
        self._running = False

        logger.info("Shutting down server...")
        await self.sessions.destroy_all()
        self._connection_sessions.clear()
        await self.gateway.stop()

        if self._stopped is not None:
            self._stopped.set()
        logger.info("Server shutdown complete")

    async def wait_closed(self) -> None:
        """Block until shutdown() completes."""
        if self._stopped is not None:
            await self._stopped.wait()


def create_server(
    config: Optional[ServerConfig] = None,
    tools: Optional[List[Union[Tool, BaseTool]]] = None,
    providers: Optional[Dict[str, ResourceProvider]] = None,
    include_cli_tools: bool = True,
    **kwargs,
) -> MCPServer:
    """
    Create an MCP server with the Ballerina tools and a file provider.

    Args:
        config: Server configuration
        tools: Extra tools to register
        providers: Extra resource providers keyed by URI scheme
        include_cli_tools: Register the ``bal`` backed project tools

    Returns:
        Configured MCPServer instance
    """
    config = config or ServerConfig()
    server = MCPServer(config, **kwargs)

    if include_cli_tools:
        from .cli_tools import register_cli_tools
        register_cli_tools(server.tools, config)

    server.add_provider("file", FileResourceProvider(allowed_paths=config.allowed_paths))

    for tool in tools or ():
        server.register_tool(tool)

    for scheme, provider in (providers or {}).items():
        server.add_provider(scheme, provider)

    return server
