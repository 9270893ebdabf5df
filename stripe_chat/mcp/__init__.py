"""MCP transport for Stripe Chat."""

from stripe_chat.mcp.client import MCPClient

__all__ = ["MCPClient"]
