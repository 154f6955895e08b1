"""Vendor format adapters keyed by VendorType."""

from typing import Dict

from ..config import settings
from ..schemas import VendorType
from .anthropic import AnthropicAdapter
from .base import StreamState, VendorAdapter, VendorRequest
from .gemini import GeminiAdapter
from .openai import OpenAIAdapter

ADAPTERS: Dict[VendorType, VendorAdapter] = {
    VendorType.OPENAI: OpenAIAdapter(),
    VendorType.ANTHROPIC: AnthropicAdapter(default_max_tokens=settings.ANTHROPIC_DEFAULT_MAX_TOKENS),
    VendorType.GEMINI: GeminiAdapter(),
}

# 新增供应商时必须同时注册适配器
assert set(ADAPTERS) == set(VendorType), "every VendorType needs an adapter"


def get_adapter(vendor: VendorType) -> VendorAdapter:
    return ADAPTERS[VendorType(vendor)]


__all__ = [
    "ADAPTERS",
    "AnthropicAdapter",
    "GeminiAdapter",
    "OpenAIAdapter",
    "StreamState",
    "VendorAdapter",
    "VendorRequest",
    "get_adapter",
]
