import json

from stripe_chat.relay import RelayContent, RelayDone, RelayError, RelayMetadata, encode_sse


def test_done_is_the_literal_sentinel():
    assert encode_sse(RelayDone()) == b"data: [DONE]\n\n"


def test_content_forwards_provider_payload():
    payload = {"id": "chunk-1", "choices": [{"index": 0, "delta": {"content": "Hi"}}]}

    encoded = encode_sse(RelayContent("Hi", payload))

    assert encoded.startswith(b"data: ")
    assert encoded.endswith(b"\n\n")
    assert json.loads(encoded[len(b"data: "):]) == payload


def test_content_without_payload_is_synthesized():
    encoded = encode_sse(RelayContent("Hi"))

    data = json.loads(encoded[len(b"data: "):])
    assert data["choices"][0]["delta"]["content"] == "Hi"


def test_error_and_metadata_records():
    assert json.loads(encode_sse(RelayError("Maximum iterations reached"))[6:]) == {
        "error": "Maximum iterations reached"
    }
    assert json.loads(encode_sse(RelayMetadata({"usage": {"total_tokens": 3}}))[6:]) == {
        "usage": {"total_tokens": 3}
    }
