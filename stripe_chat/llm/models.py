"""Conversation data model shared by the provider, executor and chat loop."""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from stripe_chat.exceptions import ConversationError

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolCall:
    """A complete tool call emitted by the model.

    ``arguments`` is the raw text the model produced; it is expected to be
    JSON but is only validated when the call is executed.
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        """Render in OpenAI chat-completions format."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        if not isinstance(data, dict):
            raise ConversationError("Tool call must be an object")
        function = data.get("function")
        if function is None:
            function = {}
        elif not isinstance(function, dict):
            raise ConversationError("Tool call function must be an object")
        arguments = function.get("arguments")
        if arguments is None:
            arguments = ""
        if not isinstance(arguments, str):
            # Some providers send already-decoded arguments in non-streamed replies
            arguments = json.dumps(arguments)
        return cls(
            id=str(data.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments,
            type=str(data.get("type") or "function"),
        )


@dataclass(frozen=True)
class ToolCallFragment:
    """Partial update to the tool call at ``index`` within one model turn."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None
    type: str | None = None


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a callable tool, as advertised to the model."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render in OpenAI chat-completions format."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Build a message from an inbound request payload entry."""
        if not isinstance(data, dict):
            raise ConversationError("Each message must be an object")
        role = str(data.get("role") or "").strip()
        if role not in ROLES:
            raise ConversationError(f"Unsupported message role: {role or '<missing>'}")

        content = data.get("content")
        if isinstance(content, list):
            # Multi-part content: keep the text parts only
            content = " ".join(
                str(part.get("text", ""))
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        elif content is not None:
            content = str(content)

        raw_calls = data.get("tool_calls")
        tool_calls = None
        if isinstance(raw_calls, list) and raw_calls:
            tool_calls = [ToolCall.from_dict(tc) for tc in raw_calls if isinstance(tc, dict)]

        tool_call_id = data.get("tool_call_id")
        return cls(
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_call_id=str(tool_call_id) if tool_call_id else None,
        )


class Conversation:
    """Append-only, ordered message list owned by a single request."""

    def __init__(self, messages: Iterable[Message] | None = None):
        self._messages: list[Message] = []
        self._known_call_ids: set[str] = set()
        for message in messages or []:
            self.append(message)

    @classmethod
    def from_payload(cls, payload: list[dict[str, Any]]) -> "Conversation":
        return cls(Message.from_dict(item) for item in payload)

    def append(self, message: Message) -> None:
        """Append a message, checking tool results reference a known call."""
        if message.role == "tool":
            if not message.tool_call_id:
                raise ConversationError("Tool message is missing tool_call_id")
            if message.tool_call_id not in self._known_call_ids:
                raise ConversationError(
                    f"Tool message references unknown tool call: {message.tool_call_id}"
                )
        if message.role == "assistant" and message.tool_calls:
            self._known_call_ids.update(tc.id for tc in message.tool_calls)
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def to_payload(self) -> list[dict[str, Any]]:
        return [message.to_dict() for message in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
