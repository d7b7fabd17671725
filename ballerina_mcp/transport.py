"""
MCP Connection implementations.

A Connection is the only channel back to one client:
- StdioConnection: newline-delimited JSON over stdin/stdout
- WebSocketConnection: JSON text frames over a Starlette WebSocket
"""

import sys
import json
import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import Optional

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .protocol import MCPErrorCode, MCPException, parse_message


class Connection(ABC):
    """Abstract base class for client connections."""

    transport_kind: str = ""

    def __init__(self, id: str):
        self.id = id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def send(self, message: dict) -> None:
        """Send an envelope to the client."""
        pass

    @abstractmethod
    async def receive(self) -> Optional[dict]:
        """
        Receive the next message. Returns None on EOF/close.

        Raises:
            MCPException: PARSE_ERROR when a frame is not a JSON object.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class StdioConnection(Connection):
    """
    Connection over the process standard streams.

    Output is one JSON document per line. Input accepts one JSON document
    per line, or Content-Length framed messages.
    """

    transport_kind = "stdio"

    def __init__(
        self,
        input_stream=None,
        output_stream=None,
        id: str = "stdio",
    ):
        super().__init__(id)
        self.input = input_stream or sys.stdin
        self.output = output_stream or sys.stdout
        self._write_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        """Write one envelope line to the output stream."""
        if self._closed:
            raise RuntimeError("Connection is closed")

        content = json.dumps(message, default=str)

        async with self._write_lock:
            try:
                self.output.write(content + "\n")
                self.output.flush()
            except (OSError, ValueError) as e:
                raise RuntimeError(f"Failed to send: {e}")

    async def receive(self) -> Optional[dict]:
        """Read the next message from the input stream."""
        while not self._closed:
            line = await asyncio.to_thread(self.input.readline)
            if not line:
                return None  # EOF

            line = line.strip()
            if not line:
                continue

            if line.lower().startswith("content-length:"):
                length = line.split(":", 1)[1].strip()
                # Skip remaining headers up to the blank separator line
                while True:
                    header = await asyncio.to_thread(self.input.readline)
                    if not header:
                        return None
                    if not header.strip():
                        break
                if not (length.isascii() and length.isdigit()):
                    raise MCPException(
                        MCPErrorCode.PARSE_ERROR,
                        f"Invalid Content-Length header: {length!r}",
                    )
                content = await asyncio.to_thread(self.input.read, int(length))
                if not content:
                    return None
                return parse_message(content)

            return parse_message(line)

        return None

    async def close(self) -> None:
        """Stop reading; the process streams themselves stay open."""
        self._closed = True


class WebSocketConnection(Connection):
    """Connection over an accepted Starlette WebSocket."""

    transport_kind = "websocket"

    _ids = itertools.count(1)

    def __init__(self, websocket: WebSocket, id: Optional[str] = None):
        super().__init__(id or f"ws-{next(self._ids)}")
        self.websocket = websocket

    async def send(self, message: dict) -> None:
        """Send an envelope as a text frame."""
        if self._closed:
            raise RuntimeError("Connection is closed")

        await self.websocket.send_text(json.dumps(message, default=str))

    async def receive(self) -> Optional[dict]:
        """Receive the next text frame."""
        if self._closed:
            return None

        try:
            content = await self.websocket.receive_text()
        except WebSocketDisconnect:
            self._closed = True
            return None
        except RuntimeError:
            # receive after our own close()
            if self._closed:
                return None
            raise

        return parse_message(content)

    async def close(self, code: int = 1000) -> None:
        """Close the WebSocket if it is still open."""
        if self._closed:
            return
        self._closed = True
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            try:
                await self.websocket.close(code=code)
            except RuntimeError:
                # Already closed by the peer
                pass
