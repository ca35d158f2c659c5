"""
opwrap MCP server.

Lets an MCP client run wrapped tools with credentials injected, without
ever handing it a secret value. Sign-in is never prompted from here: a
local session must already be cached (`opwrap login`), or a service
account token must be present.
"""

import asyncio
import json
import logging
from typing import List, Optional

from fastmcp import FastMCP
from fastmcp.tools import Tool

from .errors import OpwrapError, SupervisorInterrupted
from .supervisor import Supervisor

logger = logging.getLogger(__name__)


class SupervisorTools:
    """MCP tools backed by one Supervisor."""

    def __init__(self, supervisor: Supervisor):
        self.supervisor = supervisor
        self.tools = {
            "ping": self.ping,
            "list_tools": self.list_tools,
            "execution_context": self.execution_context,
            "session_status": self.session_status,
            "run_tool": self.run_tool,
        }

    def ping(self) -> str:
        """Health check. Returns pong if the opwrap MCP is running."""
        return "pong from opwrap 🔐"

    def list_tools(self) -> str:
        """List wrapped tools with their secret references (never values)."""
        return json.dumps(self.supervisor.describe_tools(), indent=2)

    def execution_context(self) -> str:
        """Show where opwrap thinks it is running: local or ci(<platform>)."""
        return str(self.supervisor.context())

    def session_status(self) -> str:
        """Show whether a usable 1Password session exists."""
        return json.dumps(self.supervisor.status(), indent=2)

    async def run_tool(self, tool: str, args: Optional[List[str]] = None) -> str:
        """
        Run a wrapped tool with its credentials injected.

        Args:
            tool: Registered tool name (e.g., "git", "gh", "aws")
            args: Arguments passed to the tool unchanged

        Returns:
            Exit status and captured output, or an error message
        """
        try:
            result = await asyncio.to_thread(self.supervisor.run, tool, list(args or []), True)
        except OpwrapError as e:
            return f"❌ {e}"
        except SupervisorInterrupted as e:
            return f"❌ Interrupted by signal {e.signum}"

        icon = "✅" if result.exit_code == 0 else "❌"
        lines = [f"{icon} {tool} exited with status {result.exit_code}"]
        if result.stdout:
            lines += ["", result.stdout.rstrip()]
        if result.stderr:
            lines += ["", "[stderr]", result.stderr.rstrip()]
        return "\n".join(lines)


def create_server(supervisor: Optional[Supervisor] = None) -> FastMCP:
    """Build the FastMCP server with every SupervisorTools tool registered."""
    supervisor = supervisor or Supervisor()
    # No terminal to prompt on
    supervisor.interactive = False

    mcp = FastMCP("opwrap")
    for name, func in SupervisorTools(supervisor).tools.items():
        description = (func.__doc__ or name).strip().split("\n")[0]
        mcp.add_tool(Tool.from_function(fn=func, name=name, description=description))
        logger.debug(f"Registered MCP tool: {name}")
    return mcp


def serve(supervisor: Optional[Supervisor] = None, host: str = "127.0.0.1", port: int = 8000) -> None:
    create_server(supervisor).run(transport="http", host=host, port=port)
