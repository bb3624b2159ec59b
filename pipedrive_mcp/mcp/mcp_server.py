"""
MCP server for Pipedrive built on the official MCP Python SDK.

Binds the tool catalog to the SDK's low-level ``Server`` and runs it over
one of two transports, chosen once at start-up:

- ``stdio``: JSON-RPC over stdin/stdout, for desktop MCP clients
- ``sse``: HTTP + Server-Sent Events under uvicorn, for networked clients

Protocol behaviour:
- tools/list returns every tool with its JSON Schema ``inputSchema``
- tools/call validates arguments first; unknown tools and invalid arguments
  are JSON-RPC ``INVALID_PARAMS`` errors, handler failures are results with
  ``isError: true``
- prompts/list and prompts/get serve the canned prompts
"""

import logging
from typing import Any, Dict, List, Optional

import anyio
import uvicorn
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError
from starlette.applications import Starlette

from pipedrive_mcp import __version__
from pipedrive_mcp.config import ConfigurationError, Settings
from pipedrive_mcp.crm import PipedriveClient, RateLimitedProvider, RateLimiter, RateLimiterConfig
from pipedrive_mcp.crm import ToolContext, catalog as default_catalog
from pipedrive_mcp.mcp.auth import AuthGate
from pipedrive_mcp.mcp.catalog import ToolCatalog, ToolValidationError, UnknownToolError
from pipedrive_mcp.mcp.sessions import SessionRegistry
from pipedrive_mcp.mcp.sse_transport import create_sse_app

logger = logging.getLogger(__name__)

SERVER_NAME = "pipedrive-mcp-server"


def _invalid_params(message: str, data: Any = None) -> McpError:
    return McpError(types.ErrorData(code=types.INVALID_PARAMS, message=message, data=data))


def build_server(
    catalog: ToolCatalog,
    context: Any,
    name: str = SERVER_NAME,
    version: str = __version__,
) -> Server:
    """
    Create an MCP server exposing ``catalog``.

    Args:
        catalog: Tools and prompts to serve
        context: Passed to every tool handler
        name: Server name reported at initialization
        version: Server version reported at initialization

    Returns:
        A low-level SDK server; run it once per connection
    """
    server = Server(name, version=version)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(name=tool.name, description=tool.description, inputSchema=tool.input_schema)
            for tool in catalog.list_tools()
        ]

    async def call_tool(request: types.CallToolRequest) -> types.ServerResult:
        name = request.params.name
        logger.info("Calling tool %s", name)
        try:
            result = await catalog.call_tool(name, request.params.arguments, context)
        except UnknownToolError as exc:
            raise _invalid_params(str(exc)) from exc
        except ToolValidationError as exc:
            logger.info("Rejected arguments for %s: %s", name, exc)
            raise _invalid_params(str(exc), data=exc.errors) from exc

        return types.ServerResult(
            types.CallToolResult(
                content=[types.TextContent(type="text", text=result.text)],
                isError=result.is_error,
            )
        )

    # Registered directly so validation failures stay protocol errors
    server.request_handlers[types.CallToolRequest] = call_tool

    @server.list_prompts()
    async def list_prompts() -> List[types.Prompt]:
        return [
            types.Prompt(name=prompt.name, description=prompt.description, arguments=[])
            for prompt in catalog.list_prompts()
        ]

    @server.get_prompt()
    async def get_prompt(name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
        try:
            rendered = catalog.get_prompt(name)
        except UnknownToolError as exc:
            raise _invalid_params(str(exc)) from exc
        return types.GetPromptResult.model_validate(rendered)

    return server


def build_context(settings: Settings) -> ToolContext:
    """Pipedrive client behind the shared rate limiter."""
    client = PipedriveClient(
        api_token=settings.pipedrive_api_token,
        domain=settings.pipedrive_domain,
        timeout=settings.request_timeout,
    )
    limiter = RateLimiter(RateLimiterConfig.from_settings(settings))
    return ToolContext(
        provider=RateLimitedProvider(client, limiter),
        booking_field_key=settings.booking_field_key,
    )


async def _close_context(context: ToolContext) -> None:
    provider = context.provider
    if isinstance(provider, RateLimitedProvider):
        provider = provider.wrapped
    if isinstance(provider, PipedriveClient):
        await provider.aclose()


async def run_stdio(settings: Settings, catalog: ToolCatalog = default_catalog) -> None:
    """Serve over stdin/stdout until the client closes the pipe."""
    context = build_context(settings)
    server = build_server(catalog, context)
    logger.info("Pipedrive MCP Server started (stdio transport)")
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await _close_context(context)


def create_app(
    settings: Settings,
    auth_gate: Optional[AuthGate] = None,
    context: Optional[ToolContext] = None,
    catalog: ToolCatalog = default_catalog,
) -> Starlette:
    """
    Build the SSE application.

    Args:
        settings: Server settings
        auth_gate: Authentication gate (built from settings when omitted)
        context: Tool context (built from settings when omitted; closed on shutdown)
        catalog: Tools and prompts to serve
    """
    if auth_gate is None:
        auth_gate = AuthGate.from_settings(settings)
    owns_context = context is None
    if context is None:
        context = build_context(settings)

    async def on_shutdown():
        if owns_context:
            await _close_context(context)

    return create_sse_app(
        build_server(catalog, context),
        settings,
        registry=SessionRegistry(),
        auth_gate=auth_gate,
        on_shutdown=on_shutdown,
    )


def run_sse(settings: Settings, auth_gate: Optional[AuthGate] = None) -> None:
    """Serve over HTTP/SSE with uvicorn (blocking)."""
    app = create_app(settings, auth_gate=auth_gate)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def serve(settings: Settings, auth_gate: Optional[AuthGate] = None) -> None:
    """
    Run the server on the configured transport (blocking).

    Raises:
        ConfigurationError: If the transport cannot be served in-process
    """
    if settings.transport == "stdio":
        anyio.run(run_stdio, settings)
    elif settings.transport == "sse":
        run_sse(settings, auth_gate=auth_gate)
    else:
        raise ConfigurationError(
            f"Transport {settings.transport} runs under the supervisor, not in-process"
        )
