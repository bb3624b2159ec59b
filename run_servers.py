"""
Main entry point for running the Pipedrive MCP server.

The transport is chosen once at start-up (MCP_TRANSPORT or --transport):
- stdio: MCP over stdin/stdout (for desktop MCP clients)
- sse:   MCP over HTTP + Server-Sent Events
- mcpo:  the SSE server behind the mcpo proxy, for OpenWebUI and other
         OpenAPI/streaming-HTTP clients
"""

import argparse
import logging
import os
import sys
from dataclasses import replace

# Add project root to path
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from pipedrive_mcp.config import TRANSPORTS, ConfigurationError, configure_logging, load_settings  # noqa: E402

logger = logging.getLogger("pipedrive_mcp.run_servers")


def run_mcp_server(settings, auth_gate) -> None:
    """Run the MCP server on the configured transport."""
    from pipedrive_mcp.mcp.mcp_server import serve

    if settings.transport == "stdio":
        logger.info("Starting Pipedrive MCP Server with stdio transport...")
    else:
        logger.info(
            "Starting Pipedrive MCP Server with SSE transport at http://%s:%s%s",
            settings.host,
            settings.port,
            settings.sse_path,
        )
    serve(settings, auth_gate=auth_gate)


def run_supervised(settings) -> int:
    """Run the SSE server behind the mcpo proxy."""
    from pipedrive_mcp import supervisor

    logger.info("Starting Pipedrive MCP Server with mcpo transport (SSE -> streaming HTTP)...")
    return supervisor.main(settings)


def main(argv=None):
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Run the Pipedrive MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with stdio (for MCP clients like Claude Desktop)
  python run_servers.py

  # Run with the SSE transport
  python run_servers.py --transport sse --port 3000

  # Run the SSE server behind mcpo (OpenWebUI)
  MCPO_PORT=8080 python run_servers.py --transport mcpo
""",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        help="Transport type (default: MCP_TRANSPORT or stdio)",
    )
    parser.add_argument("--host", help="Bind host for the SSE transport (default: MCP_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port for the SSE transport (default: MCP_PORT or 3000)")
    parser.add_argument("--env-file", help="Load environment variables from this file (default: .env)")

    args = parser.parse_args(argv)

    configure_logging()
    try:
        settings = load_settings(args.env_file)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    overrides = {"transport": args.transport, "host": args.host, "port": args.port}
    settings = replace(settings, **{key: value for key, value in overrides.items() if value is not None})
    configure_logging(settings.log_level)

    if settings.transport == "mcpo":
        sys.exit(run_supervised(settings))

    from pipedrive_mcp.mcp.auth import AuthGate

    try:
        auth_gate = AuthGate.from_settings(settings)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    try:
        run_mcp_server(settings, auth_gate)
    except KeyboardInterrupt:
        logger.info("Shutting down server...")


if __name__ == "__main__":
    main()
