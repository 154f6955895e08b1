import json

import pytest

from tests.utils import make_reencoder, run_reencoder, sse_body
from vapor_gateway.adapters import AnthropicAdapter, GeminiAdapter, OpenAIAdapter
from vapor_gateway.services.chunk_builder import DONE_FRAME

ANTHROPIC_EVENTS = (
    'event: message_start\n'
    'data: {"type":"message_start","message":{"id":"msg_1","usage":{"input_tokens":12,"output_tokens":1}}}\n\n'
    'event: ping\n'
    'data: {"type":"ping"}\n\n'
    'event: content_block_delta\n'
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"你好"}}\n\n'
    'event: content_block_delta\n'
    'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":", world"}}\n\n'
    'event: message_delta\n'
    'data: {"type":"message_delta","delta":{"stop_reason":"end_turn"},"usage":{"output_tokens":7}}\n\n'
    'event: message_stop\n'
    'data: {"type":"message_stop"}\n\n'
).encode("utf-8")

GEMINI_HELLO = sse_body(
    '{"candidates":[{"content":{"role":"model","parts":[{"text":"Hel"}]}}]}',
    '{"candidates":[{"content":{"role":"model","parts":[{"text":"lo"}]}}]}',
    '{"candidates":[{"content":{"role":"model","parts":[{"text":""}]},"finishReason":"STOP"}]}',
    newline="\r\n",
)


def _payloads(frames):
    assert frames[-1] == DONE_FRAME
    return [json.loads(frame[len("data: "):]) for frame in frames[:-1]]


def test_anthropic_stream_is_reencoded():
    reencoder = make_reencoder(AnthropicAdapter(), "gpt-4o")
    frames = run_reencoder(reencoder, ANTHROPIC_EVENTS)
    chunks = _payloads(frames)

    assert [chunk["choices"][0]["delta"] for chunk in chunks] == [
        {"role": "assistant"},
        {"content": "你好"},
        {"content": ", world"},
        {},
    ]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    assert {chunk["id"] for chunk in chunks} == {"msg_1"}
    assert {chunk["model"] for chunk in chunks} == {"gpt-4o"}
    assert frames.count(DONE_FRAME) == 1

    usage = reencoder.usage()
    assert (usage.input_tokens, usage.output_tokens) == (12, 7)


def test_split_at_every_byte_boundary_gives_identical_frames():
    expected = run_reencoder(make_reencoder(AnthropicAdapter()), ANTHROPIC_EVENTS)

    for cut in range(1, len(ANTHROPIC_EVENTS)):
        frames = run_reencoder(
            make_reencoder(AnthropicAdapter()),
            ANTHROPIC_EVENTS[:cut],
            ANTHROPIC_EVENTS[cut:],
        )
        assert frames == expected, f"split at byte {cut}"


def test_byte_by_byte_feed_gives_identical_frames():
    expected = run_reencoder(make_reencoder(GeminiAdapter()), GEMINI_HELLO)
    pieces = [GEMINI_HELLO[i:i + 1] for i in range(len(GEMINI_HELLO))]
    assert run_reencoder(make_reencoder(GeminiAdapter()), *pieces) == expected


def test_gemini_hello_stream_falls_back_to_estimator():
    reencoder = make_reencoder(GeminiAdapter(), "gemini-flash", fallback_input_tokens=9)
    chunks = _payloads(run_reencoder(reencoder, GEMINI_HELLO))

    assert [chunk["choices"][0]["delta"] for chunk in chunks] == [
        {"content": "Hel"},
        {"content": "lo"},
        {},
    ]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"

    usage = reencoder.usage()
    # "Hello" = 5 / 4 -> 2
    assert (usage.input_tokens, usage.output_tokens) == (9, 2)


def test_gemini_usage_metadata_overrides_estimate():
    body = sse_body(
        '{"candidates":[{"content":{"parts":[{"text":"Hello"}]},"finishReason":"STOP"}],'
        '"usageMetadata":{"promptTokenCount":3,"candidatesTokenCount":40}}'
    )
    reencoder = make_reencoder(GeminiAdapter(), fallback_input_tokens=9)
    run_reencoder(reencoder, body)
    usage = reencoder.usage()
    assert (usage.input_tokens, usage.output_tokens) == (3, 40)


def test_openai_events_are_forwarded_with_requested_model():
    body = sse_body(
        '{"id":"c1","object":"chat.completion.chunk","model":"gpt-4o-2024","choices":[{"index":0,"delta":{"role":"assistant","content":""}}]}',
        '{"id":"c1","object":"chat.completion.chunk","model":"gpt-4o-2024","choices":[{"index":0,"delta":{"content":"abcd"}}]}',
        '{"id":"c1","object":"chat.completion.chunk","model":"gpt-4o-2024","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}',
        '{"id":"c1","object":"chat.completion.chunk","model":"gpt-4o-2024","choices":[],"usage":{"prompt_tokens":11,"completion_tokens":1}}',
        "[DONE]",
    )
    reencoder = make_reencoder(OpenAIAdapter(), "gpt-4o")
    chunks = _payloads(run_reencoder(reencoder, body))

    assert len(chunks) == 4
    assert {chunk["model"] for chunk in chunks} == {"gpt-4o"}
    assert chunks[1]["choices"][0]["delta"] == {"content": "abcd"}
    assert reencoder.state.finish_reason == "stop"
    usage = reencoder.usage()
    assert (usage.input_tokens, usage.output_tokens) == (11, 1)


def test_input_after_done_is_ignored():
    reencoder = make_reencoder(OpenAIAdapter())
    frames = reencoder.feed(b"data: [DONE]\n\n")
    assert frames == [DONE_FRAME]
    assert reencoder.done
    assert reencoder.feed(b'data: {"choices":[{"delta":{"content":"late"}}]}\n\n') == []
    assert reencoder.finish() == []


def test_unparseable_lines_are_skipped():
    body = (
        b": keep-alive comment\n"
        b"data: {not json}\n\n"
        b"retry: 1000\n"
        b'data: {"candidates":[{"content":{"parts":[{"text":"ok"}]}}]}\n\n'
    )
    reencoder = make_reencoder(GeminiAdapter())
    chunks = _payloads(run_reencoder(reencoder, body))
    assert [chunk["choices"][0]["delta"] for chunk in chunks] == [{"content": "ok"}]
    assert reencoder.state.events_seen == 1


def test_stream_without_terminal_gets_done_on_finish():
    reencoder = make_reencoder(GeminiAdapter())
    frames = reencoder.feed(b'data: {"candidates":[{"content":{"parts":[{"text":"partial"}]}}]}')
    assert frames == []
    frames = reencoder.finish()
    assert len(frames) == 2
    assert frames[-1] == DONE_FRAME


def test_no_events_falls_back_to_placeholder_output():
    reencoder = make_reencoder(AnthropicAdapter(), fallback_input_tokens=4, fallback_output_tokens=500)
    run_reencoder(reencoder, b"event: ping\n\n")
    usage = reencoder.usage()
    assert (usage.input_tokens, usage.output_tokens) == (4, 500)


def test_events_without_text_bill_zero_output():
    reencoder = make_reencoder(AnthropicAdapter(), fallback_input_tokens=4, fallback_output_tokens=500)
    run_reencoder(reencoder, sse_body('{"type":"ping"}', '{"type":"message_stop"}'))
    assert reencoder.usage().output_tokens == 0


def test_anthropic_error_event_becomes_error_chunk():
    reencoder = make_reencoder(AnthropicAdapter())
    frames = reencoder.feed(sse_body('{"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}'))
    assert json.loads(frames[0][len("data: "):]) == {"error": {"message": "Overloaded", "code": "upstream_error"}}


def test_split_utf8_sequence_is_carried_over():
    # “你” = e4 bd a0
    reencoder = make_reencoder(GeminiAdapter())
    body = sse_body('{"candidates":[{"content":{"parts":[{"text":"你"}]}}]}')
    head, tail = body.split("你".encode("utf-8"))
    frames = reencoder.feed(head + b"\xe4\xbd")
    frames += reencoder.feed(b"\xa0" + tail)
    assert json.loads(frames[0][len("data: "):])["choices"][0]["delta"] == {"content": "你"}


@pytest.mark.parametrize("event", [
    '{"type":"content_block_delta","delta":"oops"}',
    '{"type":"message_start","message":"oops"}',
    '{"type":"message_delta","delta":"oops","usage":[1]}',
    '{"type":"error","error":"oops"}',
])
def test_anthropic_events_with_malformed_nesting_do_not_break_stream(event):
    body = sse_body(
        '{"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"a"}}',
        event,
        '{"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"b"}}',
    )
    frames = run_reencoder(make_reencoder(AnthropicAdapter()), body)
    chunks = _payloads(frames)

    texts = [
        chunk["choices"][0]["delta"]["content"]
        for chunk in chunks
        if "choices" in chunk and "content" in chunk["choices"][0]["delta"]
    ]
    assert texts == ["a", "b"]
    assert frames.count(DONE_FRAME) == 1


class _FragileAdapter(OpenAIAdapter):
    def reencode_event(self, event, state):
        if "boom" in event:
            raise TypeError("unexpected event shape")
        return super().reencode_event(event, state)


def test_adapter_failure_on_one_event_skips_only_that_event():
    body = sse_body(
        '{"choices":[{"index":0,"delta":{"content":"a"}}]}',
        '{"boom":true}',
        '{"choices":[{"index":0,"delta":{"content":"b"}}]}',
        "[DONE]",
    )
    reencoder = make_reencoder(_FragileAdapter())
    chunks = _payloads(run_reencoder(reencoder, body))

    assert [chunk["choices"][0]["delta"]["content"] for chunk in chunks] == ["a", "b"]
    assert reencoder.state.events_seen == 3
