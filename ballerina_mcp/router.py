"""
Request Router.

Validates request envelopes, enforces the session-state guard, dispatches
to registered method handlers and normalizes failures into MCP errors.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Union

from .protocol import (
    JSONRPC_VERSION,
    MCPErrorCode,
    MCPException,
    MCPRequest,
    MCPResponse,
)
from .session import Session, SessionState


logger = logging.getLogger(__name__)

RequestHandler = Callable[[Any, Session], Union[Any, Awaitable[Any]]]
Middleware = Callable[[MCPRequest, MCPResponse], None]


@dataclass
class Route:
    """A registered method handler."""
    method: str
    handler: RequestHandler
    requires_initialized: bool = True


def to_mcp_exception(error: BaseException) -> MCPException:
    """
    Coerce any exception into an MCPException.

    Exceptions already carrying an integer ``code`` and a string ``message``
    keep them; anything else becomes INTERNAL_ERROR with the original error
    described in ``data``.
    """
    if isinstance(error, MCPException):
        return error

    code = getattr(error, "code", None)
    message = getattr(error, "message", None)
    if isinstance(code, int) and not isinstance(code, bool) and isinstance(message, str) and message:
        return MCPException(code, message, getattr(error, "data", None))

    return MCPException(
        MCPErrorCode.INTERNAL_ERROR,
        str(error) or "Internal server error",
        {"type": type(error).__name__, "message": str(error)},
    )


class RequestRouter:
    """Routes MCP requests to method handlers."""

    def __init__(self):
        self._routes: Dict[str, Route] = {}
        self._middleware: List[Middleware] = []

    def register(
        self,
        method: str,
        handler: RequestHandler,
        requires_initialized: bool = True,
    ) -> None:
        """
        Register a handler for a method. Re-registering replaces the old one.

        Args:
            method: JSON-RPC method name
            handler: Callable taking (params, session); may be a coroutine
            requires_initialized: Reject calls unless the session is INITIALIZED
        """
        if method in self._routes:
            logger.warning(f"Overwriting existing handler for method: {method}")
        self._routes[method] = Route(method, handler, requires_initialized)
        logger.debug(f"Registered handler for method: {method}")

    def use(self, middleware: Middleware) -> None:
        """Append a middleware; middleware run in registration order."""
        self._middleware.append(middleware)

    def has_method(self, method: str) -> bool:
        return method in self._routes

    def list_methods(self) -> List[str]:
        return list(self._routes)

    async def process(self, request: MCPRequest, session: Session) -> Any:
        """
        Dispatch a request and return the handler's result.

        Raises:
            MCPException: For envelope violations, unknown methods, an
                uninitialized session, or any handler failure.
        """
        self.validate_request(request)

        route = self._routes.get(request.method)
        if route is None:
            raise MCPException(
                MCPErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )

        try:
            if route.requires_initialized:
                await self._check_initialized(session)

            result = route.handler(request.params, session)
            if inspect.isawaitable(result):
                result = await result
        except MCPException:
            raise
        except Exception as e:
            logger.exception(f"Error processing request {request.method}")
            raise to_mcp_exception(e) from e

        response = MCPResponse.success(request.id, result)
        self._apply_middleware(request, response)

        return response.result

    def validate_request(self, request: MCPRequest) -> None:
        """Check the JSON-RPC envelope shape."""
        if request.jsonrpc != JSONRPC_VERSION:
            raise MCPException(
                MCPErrorCode.INVALID_REQUEST,
                "Invalid JSON-RPC version",
            )

        if not isinstance(request.method, str) or not request.method:
            raise MCPException(
                MCPErrorCode.INVALID_REQUEST,
                "Missing or invalid method",
            )

        if request.id is None or isinstance(request.id, bool) or not isinstance(request.id, (str, int)):
            raise MCPException(
                MCPErrorCode.INVALID_REQUEST,
                "Missing request id",
            )

    async def _check_initialized(self, session: Session) -> None:
        # Serialized with initialize, so a racing request sees either the
        # state before the handshake or after it, never in between.
        async with session.lock:
            if session.state is not SessionState.INITIALIZED:
                raise MCPException(
                    MCPErrorCode.INVALID_REQUEST,
                    "Server not initialized",
                )

    def _apply_middleware(self, request: MCPRequest, response: MCPResponse) -> None:
        for middleware in self._middleware:
            try:
                middleware(request, response)
            except Exception:
                logger.exception(
                    f"Middleware {getattr(middleware, '__name__', middleware)!r} failed"
                )
