"""
Composed ``mcpo`` mode.

Runs the SSE server as a child process, waits until its health endpoint
answers, then starts the mcpo proxy (SSE to OpenAPI/streaming HTTP) in front
of it. SIGTERM and SIGINT are forwarded to both children.
"""

import json
import logging
import os
import signal
import subprocess
import sys
import time
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from pipedrive_mcp.config import Settings

logger = logging.getLogger(__name__)

RUN_SERVERS = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "run_servers.py")


def build_inner_command(settings: Settings) -> List[str]:
    return [sys.executable, RUN_SERVERS, "--transport", "sse", "--port", str(settings.port)]


def build_proxy_command(settings: Settings) -> List[str]:
    command = ["mcpo", "--port", str(settings.mcpo_port), "--server-type", "sse"]
    if settings.jwt_token:
        command += ["--header", json.dumps({"Authorization": f"Bearer {settings.jwt_token}"})]
    return command + ["--", f"http://localhost:{settings.port}{settings.sse_path}"]


def http_probe(url: str, timeout: float = 1.0) -> bool:
    try:
        return httpx.get(url, timeout=timeout).status_code == 200
    except httpx.HTTPError:
        return False


def _stop(process: Optional[subprocess.Popen], timeout: float = 10.0) -> None:
    if process is None or process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


class Supervisor:
    """
    Start the inner server, gate on its health, then run the proxy.

    Args:
        inner_command: Command starting the SSE server
        proxy_command: Command starting the proxy
        health_url: URL polled until it answers 200
        attempts: Health polls before giving up
        interval: Seconds between polls
        env: Environment for both children (inherits when omitted)
        probe: Health check callable, ``probe(url) -> bool``
    """

    def __init__(
        self,
        inner_command: Sequence[str],
        proxy_command: Sequence[str],
        health_url: str,
        attempts: int = 30,
        interval: float = 1.0,
        env: Optional[Dict[str, str]] = None,
        probe: Callable[[str], bool] = http_probe,
    ):
        self.inner_command = list(inner_command)
        self.proxy_command = list(proxy_command)
        self.health_url = health_url
        self.attempts = attempts
        self.interval = interval
        self.env = env
        self.probe = probe
        self.inner: Optional[subprocess.Popen] = None
        self.proxy: Optional[subprocess.Popen] = None
        self.stopping = False

    def wait_until_healthy(self) -> bool:
        for attempt in range(1, self.attempts + 1):
            if self.stopping:
                logger.info("Shutdown requested before the SSE server became healthy")
                return False
            if self.inner.poll() is not None:
                logger.error("SSE server exited with code %s before becoming healthy", self.inner.returncode)
                return False
            if self.probe(self.health_url):
                logger.info("SSE server is ready (attempt %d)", attempt)
                return True
            time.sleep(self.interval)
        logger.error("SSE server failed to start within %d attempts", self.attempts)
        return False

    def _forward(self, signum, frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        self.stopping = True
        for process in (self.proxy, self.inner):
            if process is not None and process.poll() is None:
                process.send_signal(signum)

    def run(self) -> int:
        """
        Run both children to completion.

        Signal forwarding is active from before the inner server starts, so
        both children are stopped however the supervisor exits.

        Returns:
            1 when the inner server never became healthy, the proxy could
            not be started, or a signal arrived first; otherwise the proxy's
            exit code
        """
        previous = {sig: signal.signal(sig, self._forward) for sig in (signal.SIGTERM, signal.SIGINT)}
        try:
            logger.info("Starting SSE server: %s", " ".join(self.inner_command))
            self.inner = subprocess.Popen(self.inner_command, env=self.env)
            if not self.wait_until_healthy():
                return 1

            logger.info("Starting proxy: %s", " ".join(self.proxy_command))
            try:
                self.proxy = subprocess.Popen(self.proxy_command, env=self.env)
            except OSError as exc:
                logger.error("Could not start proxy %s: %s", self.proxy_command[0], exc)
                return 1
            code = self.proxy.wait()
            logger.info("Proxy exited with code %s", code)
            return code
        finally:
            _stop(self.proxy)
            _stop(self.inner)
            for sig, handler in previous.items():
                signal.signal(sig, handler)


def main(settings: Settings) -> int:
    """Supervise the SSE server and the mcpo proxy for ``settings``."""
    env = dict(os.environ, MCP_TRANSPORT="sse", MCP_PORT=str(settings.port))
    supervisor = Supervisor(
        inner_command=build_inner_command(settings),
        proxy_command=build_proxy_command(settings),
        health_url=f"http://localhost:{settings.port}/health",
        env=env,
    )
    logger.info(
        "mcpo will proxy http://localhost:%s to http://localhost:%s%s",
        settings.mcpo_port,
        settings.port,
        settings.sse_path,
    )
    return supervisor.run()
