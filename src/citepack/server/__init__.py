"""MCP server for agent access to a corpus."""

from citepack.server.mcp_server import create_mcp_server

__all__ = ["create_mcp_server"]
