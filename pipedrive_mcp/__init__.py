"""Pipedrive MCP server: exposes a Pipedrive account as MCP tools and prompts."""

__version__ = "1.0.2"
