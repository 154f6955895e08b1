#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
流式重编码器 - 将任意供应商的 SSE 字节流逐块转换为 canonical SSE 帧

状态全部保存在对象上，由调用方逐块 feed()，上游结束时 finish()：
- 只解析完整的行，不完整的行和被截断的 UTF-8 字节序列留到下一块
- 同一输入无论如何切分，输出帧序列完全一致
- [DONE] 只输出一次，之后的输入全部忽略
"""

import codecs
from typing import List, Optional

from ..adapters.base import StreamState, VendorAdapter
from ..config import settings
from ..helpers import debug_log, json_lib, warning_log
from ..schemas import TokenUsage
from ..token_estimator import units_to_tokens
from .chunk_builder import DONE_FRAME, chunk_builder

_SKIPPED_PREFIXES = ("event:", "id:", "retry:")


class StreamReencoder:
    """单个流式响应的重编码状态机"""

    def __init__(
        self,
        adapter: VendorAdapter,
        model: str,
        fallback_input_tokens: int = 0,
        fallback_output_tokens: Optional[int] = None,
    ):
        self.adapter = adapter
        self.state = StreamState(model=model)
        self.fallback_input_tokens = fallback_input_tokens
        if fallback_output_tokens is None:
            fallback_output_tokens = settings.STREAM_FALLBACK_OUTPUT_TOKENS
        self.fallback_output_tokens = fallback_output_tokens

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, data: bytes) -> List[str]:
        """喂入一块上游字节，返回可立即下发的帧"""
        if self._done:
            return []

        self._buffer += self._decoder.decode(data)
        frames: List[str] = []
        while not self._done:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            frames.extend(self._process_line(line))
        return frames

    def finish(self) -> List[str]:
        """上游结束：处理残留的最后一行，必要时补发 [DONE]"""
        if self._done:
            return []

        self._buffer += self._decoder.decode(b"", final=True)
        frames: List[str] = []
        if self._buffer:
            line, self._buffer = self._buffer, ""
            frames.extend(self._process_line(line))
        if not self._done:
            debug_log("[STREAM] 上游未发送结束标记，补发 [DONE]")
            frames.append(self._mark_done())
        return frames

    def usage(self) -> TokenUsage:
        """结算用量：权威值优先，其次估算，最后占位值"""
        state = self.state
        input_tokens = state.input_tokens or self.fallback_input_tokens

        if state.output_tokens:
            output_tokens = state.output_tokens
        elif state.output_units:
            output_tokens = units_to_tokens(state.output_units)
        elif state.events_seen == 0:
            # 一个事件都没解析出来，按占位值计费
            output_tokens = self.fallback_output_tokens
        else:
            output_tokens = 0

        return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)

    def _mark_done(self) -> str:
        self._done = True
        self.state.done = True
        self._buffer = ""
        return DONE_FRAME

    def _process_line(self, raw_line: str) -> List[str]:
        line = raw_line.strip()
        if not line or line.startswith(":") or line.startswith(_SKIPPED_PREFIXES):
            return []
        if line.startswith("data:"):
            line = line[5:].strip()
            if not line:
                return []

        if line == "[DONE]":
            return [self._mark_done()]

        try:
            event = json_lib.loads(line)
        except ValueError:
            warning_log("[STREAM] 无法解析的流数据行，已跳过", kind="StreamDecodeWarning", line=line[:200])
            return []
        if not isinstance(event, dict):
            warning_log("[STREAM] 流事件不是 JSON 对象，已跳过", kind="StreamDecodeWarning", line=line[:200])
            return []

        self.state.events_seen += 1
        try:
            chunks = self.adapter.reencode_event(event, self.state)
        except (AttributeError, TypeError, KeyError, ValueError) as e:
            warning_log("[STREAM] 流事件结构异常，已跳过", kind="StreamDecodeWarning", error=str(e), line=line[:200])
            return []
        frames = [chunk_builder.frame(chunk) for chunk in chunks]

        # 供应商自身的结束事件（如 anthropic message_stop）
        if self.state.done:
            frames.append(self._mark_done())
        return frames
