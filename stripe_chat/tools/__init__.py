"""Tools package for Stripe Chat."""

from stripe_chat.tools.catalog import CatalogSnapshot, ToolCatalog, convert_mcp_tool
from stripe_chat.tools.executor import ToolExecutor, ToolResult, normalize_tool_output

__all__ = [
    "CatalogSnapshot",
    "ToolCatalog",
    "ToolExecutor",
    "ToolResult",
    "convert_mcp_tool",
    "normalize_tool_output",
]
