"""
Tests for the command-line entry point.

These start ``run_servers.py`` as a real process: one checks start-up
refusal on bad configuration, the other drives the stdio transport with the
MCP SDK's stdio client.
"""

import os
import subprocess
import sys

import pytest
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

RUN_SERVERS = os.path.join(PROJECT_ROOT, "run_servers.py")

CREDENTIALS = {
    "PIPEDRIVE_API_TOKEN": "test-token",
    "PIPEDRIVE_DOMAIN": "test.pipedrive.com",
}


def clean_env(**overrides):
    """The current environment without any server settings."""
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(("PIPEDRIVE_", "MCP_", "MCPO_"))
    }
    env.update(overrides)
    return env


class TestStartupRefusal:
    """Bad configuration exits with status 1 before serving."""

    def run(self, *args, **env):
        return subprocess.run(
            [sys.executable, RUN_SERVERS, *args],
            env=clean_env(**env),
            cwd=PROJECT_ROOT,
            capture_output=True,
            text=True,
            timeout=60,
        )

    def test_missing_credentials(self):
        result = self.run()
        assert result.returncode == 1
        assert "PIPEDRIVE_API_TOKEN" in result.stderr
        assert result.stdout == ""

    def test_invalid_boot_token(self):
        result = self.run(**CREDENTIALS, MCP_JWT_SECRET="x" * 32, MCP_JWT_TOKEN="not-a-jwt")
        assert result.returncode == 1
        assert "MCP_JWT_TOKEN" in result.stderr

    def test_unknown_transport_flag(self):
        """argparse rejects transports it does not know."""
        result = self.run("--transport", "http", **CREDENTIALS)
        assert result.returncode == 2


@pytest.mark.integration
class TestStdioTransport:
    """Full round trip over stdin/stdout."""

    @pytest.mark.asyncio
    async def test_list_tools_and_prompts(self):
        params = StdioServerParameters(
            command=sys.executable,
            args=[RUN_SERVERS, "--transport", "stdio"],
            env=clean_env(**CREDENTIALS),
            cwd=PROJECT_ROOT,
        )

        async with stdio_client(params) as (read, write):
            async with ClientSession(read, write) as session:
                init = await session.initialize()
                tools = await session.list_tools()
                prompts = await session.list_prompts()

        assert init.serverInfo.name == "pipedrive-mcp-server"
        names = [tool.name for tool in tools.tools]
        assert len(names) == 19
        assert len(set(names)) == len(names)
        assert len(prompts.prompts) == 8
