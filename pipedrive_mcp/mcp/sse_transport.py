"""
MCP over Server-Sent Events.

A client opens ``GET <sse_path>`` and receives an ``endpoint`` event naming
the URL it must POST its JSON-RPC messages to (``<message_path>?sessionId=<id>``).
Responses come back on the event stream as ``message`` events. Each stream
gets its own MCP server session, tracked in a ``SessionRegistry`` so that
message POSTs can be routed to it.

HTTP surface:
- ``GET <sse_path>``: open an event stream (401 when the auth gate denies)
- ``POST <message_path>``: deliver one JSON-RPC message (202 Accepted)
- ``GET /health``: liveness probe, never authenticated
- ``OPTIONS *``: CORS preflight (204)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, Union
from urllib.parse import quote

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.message import SessionMessage
from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.datastructures import MutableHeaders
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from pipedrive_mcp.config import Settings
from pipedrive_mcp.mcp.auth import AuthGate
from pipedrive_mcp.mcp.sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, Authorization, {SESSION_HEADER}",
}

Streams = Tuple[
    MemoryObjectReceiveStream[Union[SessionMessage, Exception]],
    MemoryObjectSendStream[SessionMessage],
]


def error_response(message: str, status_code: int, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


class SseTransport:
    """
    Server side of the SSE transport.

    ``connect_sse`` is used from the stream endpoint and yields the read and
    write streams for one MCP server session; ``handle_post_message`` routes
    an incoming message to the session named in the request.
    """

    def __init__(self, endpoint: str, registry: Optional[SessionRegistry] = None):
        """
        Initialize the transport.

        Args:
            endpoint: Path clients POST messages to, announced in the
                ``endpoint`` event
            registry: Session registry (a new one when omitted)
        """
        self.endpoint = endpoint
        self.registry = registry or SessionRegistry()

    @asynccontextmanager
    async def connect_sse(self, scope: Scope, receive: Receive, send: Send) -> AsyncIterator[Streams]:
        """
        Open an event stream and register its session.

        The session is removed when the stream ends for any reason: client
        disconnect, write failure or server shutdown.
        """
        read_stream_writer, read_stream = anyio.create_memory_object_stream[Union[SessionMessage, Exception]](0)
        write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream[Dict[str, Any]](0)

        session_id = self.registry.register(read_stream_writer)
        root_path = scope.get("root_path", "").rstrip("/")
        endpoint_uri = f"{quote(root_path + self.endpoint)}?sessionId={session_id}"
        logger.info("SSE connection established: %s", session_id)

        async def sse_writer():
            async with sse_stream_writer, write_stream_reader:
                await sse_stream_writer.send({"event": "endpoint", "data": endpoint_uri})
                async for session_message in write_stream_reader:
                    await sse_stream_writer.send({
                        "event": "message",
                        "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                    })

        async def run_response(scope: Scope, receive: Receive, send: Send):
            response = EventSourceResponse(content=sse_stream_reader, data_sender_callable=sse_writer)
            try:
                await response(scope, receive, send)
            finally:
                # Ends the server session reading from this stream
                await read_stream_writer.aclose()
                await write_stream_reader.aclose()

        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(run_response, scope, receive, send)
                yield read_stream, write_stream
        finally:
            self.registry.remove(session_id)
            logger.info("SSE connection closed: %s", session_id)

    async def handle_post_message(self, request: Request) -> Response:
        """
        Route one JSON-RPC message to its session.

        Returns:
            202 once the message is accepted; 400 for a missing session id or
            a malformed message; 404 for an unknown session. Rejected
            requests have no side effects.
        """
        session_id = request.query_params.get("sessionId") or request.headers.get(SESSION_HEADER)
        if not session_id:
            return error_response("Missing sessionId", 400)

        session = self.registry.lookup(session_id)
        if session is None:
            logger.warning("Message for unknown session %s", session_id)
            return error_response("Session not found", 404)

        body = await request.body()
        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("Invalid message for session %s: %s", session_id, exc)
            return error_response("Invalid message", 400)

        return Response(
            "Accepted",
            status_code=202,
            background=BackgroundTask(self._deliver, session, SessionMessage(message)),
        )

    async def _deliver(self, session: Session, message: SessionMessage) -> None:
        try:
            await session.channel.send(message)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.warning("Session %s closed before its message was delivered", session.session_id)


class CORSMiddleware:
    """Answers every preflight with 204 and adds CORS headers to every response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            await Response(status_code=204, headers=CORS_HEADERS)(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in CORS_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


class _StreamClosed(Response):
    """Returned after an event stream ends; the stream already sent its response."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        return None


async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    # Sent by ServerErrorMiddleware, outside the CORS middleware
    return error_response("Internal server error", 500, headers=CORS_HEADERS)


def create_sse_app(
    server: Server,
    settings: Settings,
    registry: Optional[SessionRegistry] = None,
    auth_gate: Optional[AuthGate] = None,
    on_shutdown: Optional[Callable[[], Any]] = None,
) -> Starlette:
    """
    Build the Starlette application serving ``server`` over SSE.

    Args:
        server: MCP server; one server session runs per event stream
        settings: Paths and transport settings
        registry: Session registry (a new one when omitted)
        auth_gate: Gate applied to the stream and message endpoints
            (open when omitted)
        on_shutdown: Awaitable callable run when the app shuts down

    Returns:
        The ASGI application
    """
    transport = SseTransport(settings.message_path, registry)
    gate = auth_gate or AuthGate()

    async def handle_sse(request: Request) -> Response:
        decision = gate.check(request.headers.get("Authorization"))
        if not decision.allowed:
            return error_response(decision.message, 401)

        async with transport.connect_sse(request.scope, request.receive, request._send) as (read, write):
            await server.run(read, write, server.create_initialization_options())
        return _StreamClosed()

    async def handle_message(request: Request) -> Response:
        decision = gate.check(request.headers.get("Authorization"))
        if not decision.allowed:
            return error_response(decision.message, 401)
        return await transport.handle_post_message(request)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "transport": "sse"})

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Pipedrive MCP Server (SSE) listening on port %s", settings.port)
        logger.info("SSE endpoint: http://localhost:%s%s", settings.port, settings.sse_path)
        logger.info("Message endpoint: http://localhost:%s%s", settings.port, settings.message_path)
        try:
            yield
        finally:
            if on_shutdown is not None:
                await on_shutdown()

    app = Starlette(
        routes=[
            Route(settings.sse_path, endpoint=handle_sse, methods=["GET"]),
            Route(settings.message_path, endpoint=handle_message, methods=["POST"]),
            Route("/health", endpoint=health, methods=["GET"]),
        ],
        middleware=[Middleware(CORSMiddleware)],
        exception_handlers={500: _internal_error},
        lifespan=lifespan,
    )
    app.state.transport = transport
    return app
