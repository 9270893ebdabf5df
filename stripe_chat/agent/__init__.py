"""Chat orchestration for Stripe Chat."""

from stripe_chat.agent.accumulator import ToolCallAccumulator, ToolCallBuilder
from stripe_chat.agent.chat_loop import ChatLoop, LoopState, TurnResult

__all__ = [
    "ChatLoop",
    "LoopState",
    "ToolCallAccumulator",
    "ToolCallBuilder",
    "TurnResult",
]
