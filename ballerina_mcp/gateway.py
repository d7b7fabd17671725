"""
Connection Gateway.

Owns the transport listeners and drives one reader loop per accepted
connection. Lifecycle and request events are handed directly to a
ConnectionHandler supplied at construction.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol, Set

import uvicorn
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket

from .config import ServerConfig
from .protocol import MCPException
from .transport import Connection, StdioConnection, WebSocketConnection


logger = logging.getLogger(__name__)

# "Try again later" close code for refused connections
WS_CLOSE_TRY_AGAIN_LATER = 1013


class ConnectionHandler(Protocol):
    """Receiver of gateway events."""

    def on_connection(self, connection: Connection) -> None:
        ...

    async def on_request(self, connection: Connection, message: dict) -> None:
        ...

    async def on_invalid(self, connection: Connection, error: MCPException) -> None:
        ...

    async def on_close(self, connection: Connection) -> None:
        ...


class ConnectionGateway:
    """
    Accepts websocket or stdio connections and forwards their traffic.

    start() and stop() are idempotent.
    """

    def __init__(
        self,
        config: ServerConfig,
        handler: ConnectionHandler,
        stdin=None,
        stdout=None,
    ):
        self.config = config
        self.handler = handler
        self._stdin = stdin
        self._stdout = stdout
        self._connections: Dict[str, Connection] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._uvicorn: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def connections(self) -> Dict[str, Connection]:
        return dict(self._connections)

    async def start(self) -> None:
        """Bind the configured transport."""
        if self._started:
            return

        if self.config.transport == "websocket":
            await self._start_websocket()
        elif self.config.transport == "stdio":
            self._start_stdio()
        else:
            raise ValueError(f"Unsupported transport: {self.config.transport}")

        self._started = True

    async def _start_websocket(self) -> None:
        uv_config = uvicorn.Config(
            self.build_app(),
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
            access_log=False,
        )
        self._uvicorn = uvicorn.Server(uv_config)
        self._serve_task = asyncio.create_task(self._uvicorn.serve())

        while not self._uvicorn.started:
            if self._serve_task.done():
                # Surface bind errors from uvicorn
                self._serve_task.result()
                raise RuntimeError("WebSocket server exited during startup")
            await asyncio.sleep(0.01)

        logger.info(
            f"WebSocket server listening on {self.config.host}:{self.config.port}"
        )

    def _start_stdio(self) -> None:
        connection = StdioConnection(input_stream=self._stdin, output_stream=self._stdout)
        self._spawn(self.serve_connection(connection))
        logger.info("Stdio server started")

    def build_app(self) -> Starlette:
        """Starlette application exposing the MCP websocket endpoint."""
        return Starlette(
            routes=[WebSocketRoute(self.config.path, self._websocket_endpoint)],
        )

    async def _websocket_endpoint(self, websocket: WebSocket) -> None:
        await websocket.accept()

        if len(self._connections) >= self.config.max_connections:
            logger.warning(
                f"Refusing connection: limit of {self.config.max_connections} reached"
            )
            await websocket.close(code=WS_CLOSE_TRY_AGAIN_LATER)
            return

        await self.serve_connection(WebSocketConnection(websocket))

    async def serve_connection(self, connection: Connection) -> None:
        """
        Register a connection and pump its messages until it closes.

        Each message is dispatched in its own task, so a slow request never
        holds up the ones behind it. At stdio EOF the requests already read
        are answered before the connection closes.
        """
        inflight: Set[asyncio.Task] = set()
        self._connections[connection.id] = connection
        logger.info(f"New connection established: {connection.id}")
        self.handler.on_connection(connection)

        try:
            while True:
                try:
                    message = await connection.receive()
                except MCPException as e:
                    logger.error(f"Failed to parse message on {connection.id}: {e}")
                    task = self._spawn(self.handler.on_invalid(connection, e))
                else:
                    if message is None:
                        break
                    task = self._spawn(self.handler.on_request(connection, message))

                inflight.add(task)
                task.add_done_callback(inflight.discard)
        except Exception:
            logger.exception(f"Connection {connection.id} failed")
        finally:
            if connection.transport_kind == "stdio" and inflight:
                await asyncio.gather(*inflight, return_exceptions=True)
            self._connections.pop(connection.id, None)
            await connection.close()
            logger.info(f"Connection closed: {connection.id}")
            await self.handler.on_close(connection)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def stop(self) -> None:
        """Close every connection and release the listener."""
        if not self._started:
            return
        self._started = False

        for connection in list(self._connections.values()):
            try:
                await connection.close()
            except Exception:
                logger.exception(f"Error closing connection {connection.id}")
        self._connections.clear()

        if self._uvicorn is not None:
            self._uvicorn.should_exit = True
            if self._serve_task is not None:
                await self._serve_task
            self._uvicorn = None
            self._serve_task = None
            logger.info("WebSocket server stopped")

        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
