"""
入站请求格式识别

客户端可以直接发送 Anthropic / Gemini 形态的请求体，这里识别格式后
用对应适配器的 to_canonical 归一为 canonical 请求体。出站格式只由渠道决定。
"""

from typing import Any, Dict

from .adapters import get_adapter
from .helpers import debug_log
from .schemas import VendorType

_ANTHROPIC_MARKERS = ("anthropic_version", "system", "stop_sequences")


def detect_request_format(body: Dict[str, Any]) -> VendorType:
    if "contents" in body:
        return VendorType.GEMINI
    if any(marker in body for marker in _ANTHROPIC_MARKERS):
        return VendorType.ANTHROPIC
    return VendorType.OPENAI


def normalize_inbound(body: Dict[str, Any]) -> Dict[str, Any]:
    request_format = detect_request_format(body)
    if request_format is not VendorType.OPENAI:
        debug_log("[REQUEST] 入站请求格式转换", request_format=request_format.value)
    return get_adapter(request_format).to_canonical(body)
