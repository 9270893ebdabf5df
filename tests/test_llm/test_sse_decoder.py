import json

from stripe_chat.llm.models import ToolCallFragment
from stripe_chat.llm.sse import (
    ContentDelta,
    FinishSignal,
    SSEDecoder,
    StreamEnd,
    ToolCallDelta,
    ToolCallsMessage,
    UsageOrTiming,
    parse_line,
)


def _record(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _content(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def test_parse_line_returns_payload_for_data_record():
    assert parse_line('data: {"a": 1}') == {"a": 1}


def test_parse_line_recognizes_done_sentinel():
    assert isinstance(parse_line("data: [DONE]"), StreamEnd)


def test_parse_line_drops_noise():
    assert parse_line("") is None
    assert parse_line(": keep-alive") is None
    assert parse_line("event: message") is None
    assert parse_line("data: {not json") is None
    assert parse_line("data: [1, 2]") is None
    assert parse_line("data:") is None


def test_decoder_handles_many_records_in_one_chunk():
    decoder = SSEDecoder()
    chunk = _record(_content("Hel")) + _record(_content("lo")) + "data: [DONE]\n\n"

    events = list(decoder.feed(chunk))

    assert events == [ContentDelta("Hel"), ContentDelta("lo"), StreamEnd()]
    assert decoder.ended is True


def test_decoder_buffers_record_split_across_chunks():
    decoder = SSEDecoder()
    record = _record(_content("split"))
    head, tail = record[:15], record[15:]

    assert list(decoder.feed(head)) == []
    assert list(decoder.feed(tail)) == [ContentDelta("split")]


def test_decoder_skips_malformed_lines_and_keeps_going():
    decoder = SSEDecoder()
    chunk = "data: {broken\n" + "garbage line\n" + _record(_content("ok"))

    assert list(decoder.feed(chunk)) == [ContentDelta("ok")]


def test_decoder_ignores_records_after_sentinel():
    decoder = SSEDecoder()
    chunk = "data: [DONE]\n\n" + _record(_content("late"))

    assert list(decoder.feed(chunk)) == [StreamEnd()]


def test_decoder_close_flushes_unterminated_line():
    decoder = SSEDecoder()
    assert list(decoder.feed('data: {"choices": [{"delta": {"content": "tail"}}]}')) == []

    assert list(decoder.close()) == [ContentDelta("tail")]


def test_tool_call_fragments_and_finish_reason_are_decoded():
    decoder = SSEDecoder()
    payload = {
        "choices": [
            {
                "index": 0,
                "delta": {
                    "tool_calls": [
                        {
                            "index": 1,
                            "id": "call_a",
                            "type": "function",
                            "function": {"name": "create_customer", "arguments": '{"em'},
                        }
                    ]
                },
                "finish_reason": "tool_calls",
            }
        ]
    }

    events = list(decoder.feed(_record(payload)))

    assert events == [
        ToolCallDelta(
            ToolCallFragment(
                index=1,
                id="call_a",
                name="create_customer",
                arguments_delta='{"em',
                type="function",
            )
        ),
        FinishSignal("tool_calls"),
    ]


def test_complete_message_tool_calls_are_decoded():
    decoder = SSEDecoder()
    payload = {
        "choices": [
            {
                "message": {
                    "tool_calls": [
                        {"id": "call_1", "function": {"name": "retrieve_balance", "arguments": "{}"}}
                    ]
                }
            }
        ]
    }

    events = list(decoder.feed(_record(payload)))

    assert len(events) == 1
    assert isinstance(events[0], ToolCallsMessage)
    assert events[0].tool_calls[0].name == "retrieve_balance"
    assert events[0].tool_calls[0].arguments == "{}"


def test_usage_and_timings_are_reported_as_metadata():
    decoder = SSEDecoder()
    payload = {
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
        "usage": {"total_tokens": 42},
        "timings": {"predicted_ms": 12.5},
    }

    events = list(decoder.feed(_record(payload)))

    assert events == [FinishSignal("stop"), UsageOrTiming(payload)]


def test_malformed_tool_call_delta_is_dropped_and_decoding_continues():
    decoder = SSEDecoder()
    chunk = _record({"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": "oops"}, "junk"]}}]})
    chunk += _record(_content("hello"))

    events = list(decoder.feed(chunk))

    assert events == [ContentDelta("hello")]


def test_non_text_tool_call_fields_are_normalized():
    decoder = SSEDecoder()
    payload = {
        "choices": [
            {
                "delta": {
                    "tool_calls": [
                        {"index": 0, "id": 42, "function": {"name": ["x"], "arguments": {"a": 1}}}
                    ]
                }
            }
        ]
    }

    events = list(decoder.feed(_record(payload)))

    assert events == [ToolCallDelta(ToolCallFragment(index=0, arguments_delta='{"a": 1}'))]


def test_malformed_entry_in_complete_tool_calls_is_skipped():
    decoder = SSEDecoder()
    payload = {
        "choices": [
            {
                "message": {
                    "tool_calls": [
                        {"id": "call_bad", "function": "oops"},
                        {"id": "call_1", "function": {"name": "retrieve_balance", "arguments": {}}},
                    ]
                }
            }
        ]
    }

    events = list(decoder.feed(_record(payload)))

    assert len(events) == 1
    assert [tc.id for tc in events[0].tool_calls] == ["call_1"]
    assert events[0].tool_calls[0].arguments == "{}"
