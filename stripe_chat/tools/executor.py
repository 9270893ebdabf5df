"""Tool execution against the MCP transport."""

import asyncio
import json
import time
from typing import Any, Protocol

from pydantic import BaseModel

from stripe_chat.llm.models import Message, ToolCall
from stripe_chat.logging import get_logger

log = get_logger(__name__)


class ToolTransport(Protocol):
    """Anything that can run a named tool remotely (the MCP client, a fake)."""

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any: ...


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    def as_text(self) -> str:
        """Text handed back to the model; failures become ``{"error": ...}``."""
        if self.success:
            return self.content
        return json.dumps({"error": self.error or "Tool execution failed"})


def normalize_tool_output(result: Any) -> str:
    """Reduce an MCP call result to plain text.

    The first ``text`` content block wins; anything else is serialized whole.
    """
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        for block in result["content"]:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                return str(block["text"])
    return json.dumps(result, default=str)


def parse_tool_arguments(raw_arguments: str | None) -> dict[str, Any]:
    """Decode raw argument text; blank text means no arguments."""
    if raw_arguments is not None and not isinstance(raw_arguments, str):
        raise ValueError(f"Tool arguments must be text, got {type(raw_arguments).__name__}")
    if raw_arguments is None or not raw_arguments.strip():
        return {}
    arguments = json.loads(raw_arguments)
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return arguments


class ToolExecutor:
    """Run tool calls and turn every outcome into text for the model."""

    def __init__(self, transport: ToolTransport):
        self.transport = transport

    async def run(self, name: str, raw_arguments: str | None) -> ToolResult:
        """Execute one tool call. Never raises for argument or transport failures."""
        start = time.monotonic()
        try:
            arguments = parse_tool_arguments(raw_arguments)
        except Exception as e:
            log.warning("Invalid tool arguments", tool=name, error=str(e))
            return ToolResult(success=False, error=f"Invalid tool arguments: {e}")

        log.info("Executing tool", tool=name)
        try:
            result = await self.transport.call_tool(name, arguments)
        except Exception as e:
            log.error(
                "Tool execution failed",
                tool=name,
                elapsed_ms=int((time.monotonic() - start) * 1000),
                error=str(e),
            )
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        return ToolResult(success=True, content=normalize_tool_output(result))

    async def execute(self, name: str, raw_arguments: str | None) -> str:
        """Execute one tool call and return the text shown to the model."""
        result = await self.run(name, raw_arguments)
        return result.as_text()

    async def execute_all(self, tool_calls: list[ToolCall]) -> list[Message]:
        """Execute all calls concurrently; results keep the original call order."""
        outputs = await asyncio.gather(
            *(self.execute(tc.name, tc.arguments) for tc in tool_calls)
        )
        return [
            Message(role="tool", content=output, tool_call_id=tc.id)
            for tc, output in zip(tool_calls, outputs)
        ]
