#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
响应块构建器模块 - 封装所有 canonical 流式/非流式响应对象的构建逻辑

适配器只产出 dict，SSE 分帧由 frame() 与 DONE_FRAME 统一完成
"""

import time
from typing import Any, Dict, List, Optional

from ..helpers import json_lib

DONE_FRAME = "data: [DONE]\n\n"


class ChunkBuilder:
    """响应块构建器类，state 需提供 response_id / model / created"""

    def _chunk(self, state, delta: Dict[str, Any], finish_reason: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": state.response_id,
            "object": "chat.completion.chunk",
            "created": state.created,
            "model": state.model,
            "choices": [{
                "index": 0,
                "delta": delta,
                "finish_reason": finish_reason,
            }],
        }

    def build_role_chunk(self, state) -> Dict[str, Any]:
        """构建角色初始化 chunk（只含 role 的开场增量）"""
        return self._chunk(state, {"role": "assistant"})

    def build_content_chunk(self, state, content: str) -> Dict[str, Any]:
        """构建正文内容 chunk"""
        return self._chunk(state, {"content": content})

    def build_finish_chunk(self, state, finish_reason: Optional[str]) -> Dict[str, Any]:
        """构建结束 chunk（空 delta + finish_reason）"""
        return self._chunk(state, {}, finish_reason)

    def build_error_chunk(self, message: str, code: str = "upstream_error") -> Dict[str, Any]:
        """流中途错误（响应头已发出，只能以数据帧告知客户端）"""
        return {"error": {"message": message, "code": code}}

    def build_response(
            self,
            response_id: str,
            model: str,
            choices: List[Dict[str, Any]],
            usage: Dict[str, int],
    ) -> Dict[str, Any]:
        """构建非流式 chat.completion 响应"""
        return {
            "id": response_id,
            "object": "chat.completion",
            "created": int(time.time()),
            "model": model,
            "choices": choices,
            "usage": usage,
        }

    def build_choice(self, index: int, content: str, finish_reason: Optional[str]) -> Dict[str, Any]:
        return {
            "index": index,
            "message": {
                "role": "assistant",
                "content": content,
            },
            "finish_reason": finish_reason,
        }

    def frame(self, chunk: Dict[str, Any]) -> str:
        """序列化为 SSE 数据帧"""
        return f"data: {json_lib.dumps(chunk)}\n\n"


# 全局单例实例
chunk_builder = ChunkBuilder()
