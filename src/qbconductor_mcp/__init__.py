"""QuickBooks Desktop MCP Server.

A Model Context Protocol server exposing QuickBooks Desktop accounting
operations through the Conductor API.
"""

__version__ = "0.1.0"

from qbconductor_mcp.server import mcp

__all__ = ["mcp", "__version__"]
