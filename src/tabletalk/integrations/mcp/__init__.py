"""MCP (Model Context Protocol) integration for TableTalk.

This module provides an MCP server that exposes TableTalk operations
as tools for AI agents.

Example:
    # Run the MCP server
    python -m tabletalk.integrations.mcp.server --database sqlite:///tabletalk.db

    # Or via entry point (after pip install)
    tabletalk-mcp --database sqlite:///tabletalk.db
"""

from tabletalk.integrations.mcp.server import create_server, mcp

__all__ = ["mcp", "create_server"]
