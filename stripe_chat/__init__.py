"""Stripe Chat - streaming chat relay with Stripe MCP tool calling."""

__version__ = "0.1.0"

from stripe_chat.config import Config

__all__ = ["Config", "__version__"]
