import asyncio
import json

import pytest

from stripe_chat.exceptions import ConfigurationError, MCPError
from stripe_chat.llm.models import ToolCall
from stripe_chat.tools.executor import ToolExecutor, ToolResult, normalize_tool_output


class RecordingTransport:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    async def call_tool(self, name: str, arguments: dict):
        self.calls.append((name, arguments))
        if self.error is not None:
            raise self.error
        return self.result


class StaggeredTransport:
    def __init__(self, delays: dict[str, float]):
        self.delays = delays
        self.completed: list[str] = []

    async def call_tool(self, name: str, arguments: dict):
        await asyncio.sleep(self.delays[name])
        self.completed.append(name)
        return {"content": [{"type": "text", "text": f"result-{name}"}]}


@pytest.mark.asyncio
async def test_execute_returns_first_text_block():
    transport = RecordingTransport(
        result={
            "content": [
                {"type": "image", "data": "..."},
                {"type": "text", "text": '{"available": 1000}'},
                {"type": "text", "text": "second"},
            ]
        }
    )
    executor = ToolExecutor(transport)

    output = await executor.execute("retrieve_balance", "")

    assert output == '{"available": 1000}'
    assert transport.calls == [("retrieve_balance", {})]


@pytest.mark.asyncio
async def test_execute_passes_parsed_arguments():
    transport = RecordingTransport(result={"content": [{"type": "text", "text": "ok"}]})
    executor = ToolExecutor(transport)

    await executor.execute("create_customer", '{"email": "a@example.com"}')

    assert transport.calls == [("create_customer", {"email": "a@example.com"})]


@pytest.mark.asyncio
async def test_execute_serializes_result_without_text_block():
    transport = RecordingTransport(result={"id": "cus_1", "object": "customer"})
    executor = ToolExecutor(transport)

    output = await executor.execute("retrieve_customer", "{}")

    assert json.loads(output) == {"id": "cus_1", "object": "customer"}


@pytest.mark.asyncio
async def test_invalid_arguments_become_structured_error_text():
    transport = RecordingTransport(result={})
    executor = ToolExecutor(transport)

    output = await executor.execute("create_customer", '{"email": ')

    payload = json.loads(output)
    assert "error" in payload
    assert "Invalid tool arguments" in payload["error"]
    assert transport.calls == []


@pytest.mark.asyncio
async def test_non_object_arguments_become_structured_error_text():
    executor = ToolExecutor(RecordingTransport(result={}))

    output = await executor.execute("create_customer", "[1, 2]")

    assert "error" in json.loads(output)


@pytest.mark.asyncio
async def test_transport_failure_becomes_structured_error_text():
    transport = RecordingTransport(error=MCPError("MCP error: No such customer (code: -32000)", code=-32000))
    executor = ToolExecutor(transport)

    output = await executor.execute("retrieve_customer", '{"customer": "cus_x"}')

    assert json.loads(output) == {"error": "MCP error: No such customer (code: -32000)"}


@pytest.mark.asyncio
async def test_configuration_failure_is_not_raised():
    transport = RecordingTransport(error=ConfigurationError("STRIPE_SECRET_KEY is not configured"))
    executor = ToolExecutor(transport)

    result = await executor.run("retrieve_balance", None)

    assert result.success is False
    assert result.error == "STRIPE_SECRET_KEY is not configured"


@pytest.mark.asyncio
async def test_execute_all_keeps_call_order_regardless_of_completion():
    transport = StaggeredTransport({"a": 0.03, "b": 0.01, "c": 0.02})
    executor = ToolExecutor(transport)
    calls = [
        ToolCall(id="call_0", name="a"),
        ToolCall(id="call_1", name="b"),
        ToolCall(id="call_2", name="c"),
    ]

    messages = await executor.execute_all(calls)

    assert transport.completed == ["b", "c", "a"]
    assert [m.tool_call_id for m in messages] == ["call_0", "call_1", "call_2"]
    assert [m.content for m in messages] == ["result-a", "result-b", "result-c"]
    assert all(m.role == "tool" for m in messages)


def test_normalize_tool_output_handles_plain_values():
    assert normalize_tool_output(None) == "null"
    assert normalize_tool_output({"content": []}) == '{"content": []}'


def test_tool_result_text_for_success_and_failure():
    assert ToolResult(content="ok").as_text() == "ok"
    assert json.loads(ToolResult(success=False, error="remote failure").as_text()) == {"error": "remote failure"}
    assert json.loads(ToolResult(success=False).as_text()) == {"error": "Tool execution failed"}


@pytest.mark.asyncio
async def test_non_text_arguments_become_structured_error_text():
    transport = RecordingTransport(result={})
    executor = ToolExecutor(transport)

    output = await executor.execute("retrieve_balance", {"a": 1})

    assert "Invalid tool arguments" in json.loads(output)["error"]
    assert transport.calls == []
