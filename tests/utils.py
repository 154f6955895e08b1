"""Test helpers shared across modules."""

from vapor_gateway.adapters.base import VendorAdapter
from vapor_gateway.services.stream_reencoder import StreamReencoder

AUTH = {"Authorization": "Bearer sk-rich"}


def sse_body(*events: str, newline: str = "\n") -> bytes:
    """把若干 data 行拼成 SSE 字节流"""
    return "".join(f"data: {event}{newline}{newline}" for event in events).encode("utf-8")


def make_reencoder(adapter: VendorAdapter, model: str = "test-model", **kwargs) -> StreamReencoder:
    """固定 id / created，便于逐帧比较"""
    reencoder = StreamReencoder(adapter, model, **kwargs)
    reencoder.state.response_id = "chatcmpl-fixed"
    reencoder.state.created = 1700000000
    return reencoder


def run_reencoder(reencoder: StreamReencoder, *pieces: bytes) -> list:
    frames = []
    for piece in pieces:
        frames.extend(reencoder.feed(piece))
    frames.extend(reencoder.finish())
    return frames
