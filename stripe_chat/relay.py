"""Relay of chat-loop output to the caller as Server-Sent Events."""

import json
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from stripe_chat.llm.sse import DONE_SENTINEL
from stripe_chat.logging import get_logger

log = get_logger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass(frozen=True)
class RelayContent:
    """A content fragment, forwarded as the provider sent it."""

    text: str
    payload: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RelayMetadata:
    """Usage/timing trailer of the final turn."""

    payload: dict[str, Any]


@dataclass(frozen=True)
class RelayError:
    message: str


@dataclass(frozen=True)
class RelayDone:
    pass


RelayEvent = RelayContent | RelayMetadata | RelayError | RelayDone


class ClientDisconnected(Exception):
    """The caller went away while we were writing."""


def _content_payload(event: RelayContent) -> dict[str, Any]:
    if event.payload:
        return event.payload
    return {"choices": [{"index": 0, "delta": {"content": event.text}, "finish_reason": None}]}


def encode_sse(event: RelayEvent) -> bytes:
    """Render one relay event as an SSE ``data:`` record."""
    if isinstance(event, RelayDone):
        data = DONE_SENTINEL
    elif isinstance(event, RelayContent):
        data = json.dumps(_content_payload(event))
    elif isinstance(event, RelayMetadata):
        data = json.dumps(event.payload)
    elif isinstance(event, RelayError):
        data = json.dumps({"error": event.message})
    else:
        raise TypeError(f"Unsupported relay event: {event!r}")
    return f"data: {data}\n\n".encode("utf-8")


class SSEWriter:
    """Writes relay events to an aiohttp streaming response."""

    def __init__(self, request: web.Request, headers: dict[str, str] | None = None):
        self.request = request
        self.response = web.StreamResponse(
            status=200,
            reason="OK",
            headers={**SSE_HEADERS, **(headers or {})},
        )
        self._prepared = False

    async def prepare(self) -> web.StreamResponse:
        if not self._prepared:
            await self.response.prepare(self.request)
            self._prepared = True
        return self.response

    async def send(self, event: RelayEvent) -> None:
        await self.prepare()
        try:
            await self.response.write(encode_sse(event))
        except ConnectionError as e:
            raise ClientDisconnected(str(e)) from e

    async def close(self) -> None:
        if not self._prepared:
            return
        try:
            await self.response.write_eof()
        except ConnectionError:
            log.debug("Client gone before end of stream")
