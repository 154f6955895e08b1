from vapor_gateway.schemas import ChatCompletionRequest, Message
from vapor_gateway.token_estimator import (
    estimate_input_tokens,
    estimate_messages_tokens,
    estimate_text_tokens,
    is_cjk,
    text_units,
)


def _request(*contents):
    return ChatCompletionRequest(
        model="m",
        messages=[{"role": "user", "content": content} for content in contents],
    )


def test_latin_text_costs_a_quarter_token_per_char():
    assert estimate_text_tokens("Hello!") == 2  # 6 / 4 = 1.5 -> 2
    assert estimate_text_tokens("abcd") == 1
    assert estimate_text_tokens("") == 0


def test_cjk_text_costs_two_thirds_token_per_char():
    assert is_cjk("你")
    assert is_cjk("㐀")  # Extension A
    assert is_cjk("豈")  # Compatibility Ideographs
    assert not is_cjk("a")
    assert not is_cjk("。")
    assert estimate_text_tokens("你好吗") == 2  # 3 / 1.5 = 2
    assert estimate_text_tokens("你好") == 2  # 1.33 -> 2


def test_mixed_text_is_summed_before_rounding():
    # 3 CJK (2 tokens) + 4 latin (1 token)
    assert estimate_text_tokens("你好吗abcd") == 3


def test_messages_round_once_over_the_whole_conversation():
    messages = [Message(role="user", content="ab"), Message(role="assistant", content="cd")]
    # 2 + 2 chars = 1 token; per-message rounding would give 2
    assert estimate_messages_tokens(messages) == 1


def test_only_text_parts_are_counted():
    request = ChatCompletionRequest(
        model="m",
        messages=[{
            "role": "user",
            "content": [
                {"type": "text", "text": "abcd"},
                {"type": "image_url", "image_url": {"url": "https://example.com/a-very-long-image-url.png"}},
                {"type": "text", "text": "efgh"},
            ],
        }],
    )
    assert estimate_input_tokens(request) == 2


def test_estimate_is_monotonic_in_appended_text():
    base = "The quick brown fox 跳过 the lazy dog"
    previous = estimate_input_tokens(_request(base))
    for suffix in ["a", "ab", "abc 你", "abc 你好世界 and more"]:
        current = estimate_input_tokens(_request(base + suffix))
        assert current >= previous
        previous = current


def test_whitespace_changes_stay_within_rounding():
    compact = estimate_input_tokens(_request("hello world"))
    spaced = estimate_input_tokens(_request("hello  world"))
    assert abs(spaced - compact) <= 1
    assert text_units("  ") == 6
