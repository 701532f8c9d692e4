"""Read-only MCP status endpoint for a running launcher."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from mcsm_launcher.supervisor import Supervisor


class SuppressDisconnect(logging.Filter):
    """Downgrade the MCP SDK's client-disconnect traceback to DEBUG.

    The SDK logs a full ClosedResourceError traceback when an HTTP client
    goes away before the response is sent; nothing is wrong on our side.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.exc_info and record.exc_info[1] is not None:
            if "ClosedResourceError" in str(record.exc_info[1]):
                record.levelno = logging.DEBUG
                record.levelname = "DEBUG"
                record.msg = "Client disconnected before response completed"
                record.args = None
                record.exc_info = None
                record.exc_text = None
        return True


def create_server(supervisor: Supervisor, port: int) -> FastMCP:
    """Create the MCP server exposing launcher status tools."""

    mcp = FastMCP(
        name="mcsm-launcher",
        instructions=(
            "Reports the state of the MCSManager web and daemon processes. "
            "Use get_status for the launcher phase and each process's pid, "
            "status and exit code."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    @mcp.tool()
    async def get_status() -> dict:
        """Return the launcher phase and the status of both processes.

        Each process entry has name, working directory, PID, status, exit
        code, exit signal, whether it was signalled, and uptime.
        """
        return supervisor.status()

    return mcp
