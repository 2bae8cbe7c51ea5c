"""Entry point for running the QuickBooks Desktop MCP server.

Run with: python -m qbconductor_mcp
Or use the console script: qbconductor-mcp
"""

from qbconductor_mcp.server import mcp


def main() -> None:
    """Run the MCP server with stdio transport."""
    mcp.run()


if __name__ == "__main__":
    main()
