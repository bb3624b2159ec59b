"""
MCP (Model Context Protocol) layer.

Serves the Pipedrive tools through the official ``mcp`` SDK.

### Transports
Run in stdio mode (Claude Desktop and other local MCP clients):
    python run_servers.py --transport stdio

Run over HTTP/SSE:
    python run_servers.py --transport sse --port 3000

The SSE server exposes:
- GET /sse: event stream; the first event names the message endpoint
- POST /message?sessionId=<id>: JSON-RPC messages for that stream
- GET /health: liveness probe

Set MCP_JWT_SECRET (and MCP_JWT_TOKEN) to require ``Authorization: Bearer``
tokens on the stream and message endpoints.

The server binding lives in ``pipedrive_mcp.mcp.mcp_server`` and is imported
on demand, since it depends on the CRM package which depends on the catalog.
"""

from .auth import AuthDecision, AuthGate
from .catalog import (
    ToolCatalog,
    ToolResult,
    ToolValidationError,
    UnknownToolError,
)
from .sessions import Session, SessionRegistry

__all__ = [
    "AuthDecision",
    "AuthGate",
    "ToolCatalog",
    "ToolResult",
    "ToolValidationError",
    "UnknownToolError",
    "Session",
    "SessionRegistry",
]
