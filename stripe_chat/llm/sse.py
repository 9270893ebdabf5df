"""Server-Sent Events decoding for OpenAI-compatible chat-completion streams.

The provider sends newline-delimited ``data: <json>`` records and finishes
with the ``data: [DONE]`` sentinel. A transport chunk may hold zero, one or
many records, and may end in the middle of one; ``SSEDecoder`` keeps the
unterminated tail until the next chunk (or ``close()``) completes it.

Lines that are not ``data:`` records or whose payload is not a JSON object
are dropped: upstream noise must never stop the chat loop.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from stripe_chat.exceptions import ConversationError
from stripe_chat.llm.models import ToolCall, ToolCallFragment
from stripe_chat.logging import get_logger

log = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class ContentDelta:
    text: str
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ToolCallDelta:
    fragment: ToolCallFragment


@dataclass(frozen=True)
class ToolCallsMessage:
    """A complete, non-streamed ``tool_calls`` list."""

    tool_calls: tuple[ToolCall, ...]


@dataclass(frozen=True)
class FinishSignal:
    reason: str


@dataclass(frozen=True)
class UsageOrTiming:
    metadata: dict[str, Any]


@dataclass(frozen=True)
class StreamEnd:
    pass


StreamEvent = ContentDelta | ToolCallDelta | ToolCallsMessage | FinishSignal | UsageOrTiming | StreamEnd


def parse_line(line: str) -> dict[str, Any] | StreamEnd | None:
    """Decode one SSE line.

    Returns the JSON payload, ``StreamEnd`` for the sentinel, or ``None``
    when the line carries nothing usable.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):].strip()
    if not data:
        return None
    if data == DONE_SENTINEL:
        return StreamEnd()
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def _text_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _fragment_from_delta(raw: dict[str, Any], position: int) -> ToolCallFragment | None:
    function = raw.get("function")
    if function is None:
        function = {}
    elif not isinstance(function, dict):
        return None
    index = raw.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        index = position
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        # Some providers send already-decoded arguments
        arguments = json.dumps(arguments)
    return ToolCallFragment(
        index=index,
        id=_text_or_none(raw.get("id")),
        name=_text_or_none(function.get("name")),
        arguments_delta=arguments or None,
        type=_text_or_none(raw.get("type")),
    )


def events_from_payload(payload: dict[str, Any]) -> Iterator[StreamEvent]:
    """Expand one decoded payload into stream events, in wire order."""
    choices = payload.get("choices")
    choice = choices[0] if isinstance(choices, list) and choices else None
    if not isinstance(choice, dict):
        choice = None

    if choice is not None:
        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                yield ContentDelta(text=content, payload=payload)
            raw_calls = delta.get("tool_calls")
            if isinstance(raw_calls, list):
                for position, raw in enumerate(raw_calls):
                    fragment = _fragment_from_delta(raw, position) if isinstance(raw, dict) else None
                    if fragment is None:
                        log.debug("Dropping malformed tool call delta", raw=raw)
                        continue
                    yield ToolCallDelta(fragment=fragment)

        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("tool_calls"), list):
            calls = []
            for raw in message["tool_calls"]:
                try:
                    calls.append(ToolCall.from_dict(raw))
                except ConversationError:
                    log.debug("Dropping malformed tool call", raw=raw)
            yield ToolCallsMessage(tool_calls=tuple(calls))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            yield FinishSignal(reason=str(finish_reason))

    if payload.get("usage") or payload.get("timings"):
        yield UsageOrTiming(metadata=payload)


class SSEDecoder:
    """Incremental decoder turning text chunks into stream events."""

    def __init__(self) -> None:
        self._buffer = ""
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def feed(self, chunk: str) -> Iterator[StreamEvent]:
        """Decode every complete line in ``chunk`` (plus any buffered tail)."""
        self._buffer += chunk
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            yield from self._decode(line)

    def close(self) -> Iterator[StreamEvent]:
        """Flush a trailing unterminated line at end of transport."""
        tail, self._buffer = self._buffer, ""
        if tail:
            yield from self._decode(tail)

    def _decode(self, line: str) -> Iterator[StreamEvent]:
        if self._ended:
            return
        parsed = parse_line(line)
        if parsed is None:
            return
        if isinstance(parsed, StreamEnd):
            self._ended = True
            yield parsed
            return
        yield from events_from_payload(parsed)
