"""
Token 估算器

粗略估算：CJK 字符约 1.5 个字符一个 token，其余字符约 4 个字符一个 token。
为保证确定性，内部以 1/12 token 为单位做整数累加（CJK 计 8，其他计 3），
最后统一向上取整。
"""

from typing import Iterable

from .schemas import ChatCompletionRequest, Message

_CJK_UNITS = 8
_OTHER_UNITS = 3
_UNITS_PER_TOKEN = 12

_CJK_RANGES = (
    (0x3400, 0x4DBF),   # CJK Unified Ideographs Extension A
    (0x4E00, 0x9FFF),   # CJK Unified Ideographs
    (0xF900, 0xFAFF),   # CJK Compatibility Ideographs
)


def is_cjk(char: str) -> bool:
    code = ord(char)
    for start, end in _CJK_RANGES:
        if start <= code <= end:
            return True
    return False


def text_units(text: str) -> int:
    """文本的估算权重（单位 1/12 token）"""
    if not text:
        return 0
    cjk = sum(1 for char in text if is_cjk(char))
    return cjk * _CJK_UNITS + (len(text) - cjk) * _OTHER_UNITS


def units_to_tokens(units: int) -> int:
    return -(-units // _UNITS_PER_TOKEN)


def estimate_text_tokens(text: str) -> int:
    return units_to_tokens(text_units(text))


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    """所有消息所有文本片段求和后再取整"""
    return units_to_tokens(sum(text_units(message.text()) for message in messages))


def estimate_input_tokens(request: ChatCompletionRequest) -> int:
    return estimate_messages_tokens(request.messages)
