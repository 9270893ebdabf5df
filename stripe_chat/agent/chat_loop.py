"""Streaming tool-calling loop for one chat request."""

from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from stripe_chat.agent.accumulator import ToolCallAccumulator
from stripe_chat.exceptions import LLMAPIError, StripeChatError
from stripe_chat.llm import LLMProvider
from stripe_chat.llm.models import Conversation, Message, ToolCall, ToolDefinition
from stripe_chat.llm.sse import (
    ContentDelta,
    FinishSignal,
    SSEDecoder,
    StreamEnd,
    StreamEvent,
    ToolCallDelta,
    ToolCallsMessage,
    UsageOrTiming,
)
from stripe_chat.logging import get_logger
from stripe_chat.relay import RelayContent, RelayDone, RelayError, RelayEvent, RelayMetadata
from stripe_chat.tools.catalog import ToolCatalog
from stripe_chat.tools.executor import ToolExecutor

log = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 10
MAX_ITERATIONS_MESSAGE = "Maximum iterations reached"


class LoopState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    DECIDING = "deciding"
    EXECUTING_TOOLS = "executing_tools"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TurnResult:
    """What one provider round-trip produced."""

    accumulator: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    content_parts: list[str] = field(default_factory=list)
    metadata: dict[str, Any] | None = None

    @property
    def content(self) -> str:
        return "".join(self.content_parts)


class ChatLoop:
    """Drives model turns and tool executions until a final answer.

    One instance serves exactly one request and owns its conversation.
    """

    def __init__(
        self,
        provider: LLMProvider,
        catalog: ToolCatalog | None,
        executor: ToolExecutor,
        conversation: Conversation,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.provider = provider
        self.catalog = catalog
        self.executor = executor
        self.conversation = conversation
        self.max_iterations = max_iterations
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.state = LoopState.IDLE
        self.iterations = 0

    def _set_state(self, state: LoopState) -> None:
        log.debug("Chat loop state", state=state.value, iteration=self.iterations)
        self.state = state

    async def _load_tools(self) -> list[ToolDefinition]:
        if self.catalog is None:
            return []
        try:
            return await self.catalog.list()
        except Exception as e:
            # Continue without tools if fetch fails
            log.warning("Failed to fetch tools, continuing without them", error=str(e))
            return []

    def _apply(self, event: StreamEvent, turn: TurnResult) -> RelayContent | None:
        """Fold one stream event into the turn; returns content to relay."""
        if isinstance(event, ContentDelta):
            turn.content_parts.append(event.text)
            return RelayContent(text=event.text, payload=event.payload)
        if isinstance(event, ToolCallDelta):
            turn.accumulator.add(event.fragment)
        elif isinstance(event, ToolCallsMessage):
            turn.accumulator.set_complete(event.tool_calls)
        elif isinstance(event, FinishSignal):
            turn.accumulator.set_finish_reason(event.reason)
        elif isinstance(event, UsageOrTiming):
            turn.metadata = event.metadata
        return None

    async def _stream_turn(self, tools: list[ToolDefinition], turn: TurnResult) -> AsyncIterator[RelayContent]:
        """Run one provider request, relaying content as it arrives."""
        self._set_state(LoopState.REQUESTING)
        decoder = SSEDecoder()
        chunks = self.provider.stream_chat(
            self.conversation.messages,
            tools=tools,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        async with aclosing(chunks):
            self._set_state(LoopState.STREAMING)
            async for chunk in chunks:
                for event in decoder.feed(chunk):
                    relay = self._apply(event, turn)
                    if relay is not None:
                        yield relay
                if decoder.ended:
                    return
        # Transport closed without the sentinel: use whatever was buffered
        for event in decoder.close():
            if isinstance(event, StreamEnd):
                break
            relay = self._apply(event, turn)
            if relay is not None:
                yield relay

    async def _execute_tools(self, content: str, tool_calls: list[ToolCall]) -> None:
        self._set_state(LoopState.EXECUTING_TOOLS)
        self.conversation.append(
            Message(role="assistant", content=content or None, tool_calls=tool_calls)
        )
        log.info(
            "Executing tool calls",
            iteration=self.iterations,
            tools=[tc.name for tc in tool_calls],
        )
        results = await self.executor.execute_all(tool_calls)
        self.conversation.extend(results)

    async def run(self) -> AsyncIterator[RelayEvent]:
        """Yield relay events until the final answer, an error, or the ceiling."""
        while self.iterations < self.max_iterations:
            self.iterations += 1
            tools = await self._load_tools()
            turn = TurnResult()

            try:
                async with aclosing(self._stream_turn(tools, turn)) as relayed:
                    async for event in relayed:
                        yield event
            except LLMAPIError as e:
                log.error("Model API request failed", status=e.status_code, error=str(e))
                self._set_state(LoopState.FAILED)
                yield RelayError(f"Model API error: {e.body or e}")
                return
            except StripeChatError as e:
                log.error("Chat turn failed", error=str(e))
                self._set_state(LoopState.FAILED)
                yield RelayError(str(e))
                return
            except Exception as e:
                log.exception("Unexpected error in chat loop")
                self._set_state(LoopState.FAILED)
                yield RelayError(str(e) or type(e).__name__)
                return

            self._set_state(LoopState.DECIDING)
            tool_calls = turn.accumulator.freeze()
            if turn.accumulator.requires_tools and tool_calls:
                try:
                    await self._execute_tools(turn.content, tool_calls)
                except Exception as e:
                    log.exception("Tool execution step failed", iteration=self.iterations)
                    self._set_state(LoopState.FAILED)
                    yield RelayError(str(e) or type(e).__name__)
                    return
                continue
            if turn.accumulator.requires_tools:
                log.warning("Model signalled tool use without any tool call", iteration=self.iterations)

            self._set_state(LoopState.FINALIZING)
            self.conversation.append(Message(role="assistant", content=turn.content))
            if turn.metadata:
                yield RelayMetadata(payload=turn.metadata)
            yield RelayDone()
            self._set_state(LoopState.DONE)
            return

        log.warning("Chat loop hit iteration ceiling", max_iterations=self.max_iterations)
        self._set_state(LoopState.FAILED)
        yield RelayError(MAX_ITERATIONS_MESSAGE)
