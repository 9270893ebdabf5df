"""Reassembly of streamed tool-call fragments into complete tool calls."""

import uuid
from dataclasses import dataclass

from stripe_chat.llm.models import ToolCall, ToolCallFragment

TOOL_CALLS_FINISH_REASON = "tool_calls"


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolCallBuilder:
    """Mutable, in-progress tool call for one index."""

    id: str
    name: str = ""
    arguments: str = ""
    type: str = "function"

    def merge(self, fragment: ToolCallFragment) -> None:
        if fragment.arguments_delta:
            self.arguments += fragment.arguments_delta
        # Later fragments may repeat or omit id/name; never blank them out
        if fragment.id:
            self.id = fragment.id
        if fragment.name:
            self.name = fragment.name

    def freeze(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments=self.arguments, type=self.type)


class ToolCallAccumulator:
    """Index-keyed builder table for the tool calls of one model turn.

    Indices need not be contiguous; frozen calls come out in ascending
    index order.
    """

    def __init__(self) -> None:
        self._builders: dict[int, ToolCallBuilder] = {}
        self._complete: list[ToolCall] | None = None
        self.saw_fragment = False
        self.finish_reason: str | None = None

    def add(self, fragment: ToolCallFragment) -> None:
        self.saw_fragment = True
        builder = self._builders.get(fragment.index)
        if builder is None:
            self._builders[fragment.index] = ToolCallBuilder(
                id=fragment.id or generate_call_id(),
                name=fragment.name or "",
                arguments=fragment.arguments_delta or "",
                type=fragment.type or "function",
            )
            return
        builder.merge(fragment)

    def set_complete(self, tool_calls: list[ToolCall] | tuple[ToolCall, ...]) -> None:
        """Record a full, non-streamed tool_calls list; it replaces any fragments."""
        self._complete = [
            tc if tc.id else ToolCall(id=generate_call_id(), name=tc.name, arguments=tc.arguments, type=tc.type)
            for tc in tool_calls
        ]

    def set_finish_reason(self, reason: str | None) -> None:
        self.finish_reason = reason

    @property
    def requires_tools(self) -> bool:
        """Any one signal suffices: a fragment, the finish reason, or a full list."""
        return (
            self.saw_fragment
            or self.finish_reason == TOOL_CALLS_FINISH_REASON
            or self._complete is not None
        )

    def freeze(self) -> list[ToolCall]:
        if self._complete is not None:
            return list(self._complete)
        return [self._builders[index].freeze() for index in sorted(self._builders)]
