#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
响应解析器模块 - 封装各供应商响应内容的通用解析逻辑

提供内容拍平、结束原因映射、用量字段读取等统一接口，供各格式适配器复用

性能优化：所有正则表达式在类初始化时预编译
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ResponseParser:
    """响应解析器类，封装供应商无关的解析逻辑"""

    def __init__(self):
        """初始化解析器，预编译所有正则表达式"""
        # data:image/png;base64,xxxx
        self._re_data_url = re.compile(r"^data:(?P<mime>[\w.+/-]+);base64,(?P<data>.+)$", re.DOTALL)

    def flatten_content(self, content: Any) -> str:
        """将字符串或有序片段列表按文档顺序拼接为单一文本

        支持的片段形态：
        - 纯字符串
        - {"type": "text", "text": "..."}（OpenAI / Anthropic）
        - {"text": "..."}（Gemini parts）
        非文本片段（图片、工具调用等）忽略
        """
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, dict):
            content = [content]
        if not isinstance(content, list):
            return ""

        texts = []
        for segment in content:
            if isinstance(segment, str):
                texts.append(segment)
                continue
            if not isinstance(segment, dict):
                continue
            segment_type = segment.get("type")
            if segment_type not in (None, "text", "text_delta"):
                continue
            text = segment.get("text")
            if isinstance(text, str):
                texts.append(text)
        return "".join(texts)

    def map_finish_reason(
        self,
        reason: Any,
        table: Mapping[str, str],
    ) -> Optional[str]:
        """按供应商固定映射表转换结束原因；未映射的值小写透传"""
        if reason is None or reason == "":
            return None
        normalized = str(reason).lower()
        return table.get(normalized, normalized)

    def read_tokens(self, block: Any, key: str) -> int:
        """读取用量字段，缺失或非法时为 0"""
        if not isinstance(block, dict):
            return 0
        value = block.get(key)
        if isinstance(value, bool):
            return 0
        if isinstance(value, (int, float)) and value > 0:
            return int(value)
        return 0

    def parse_data_url(self, url: str) -> Optional[Tuple[str, str]]:
        """解析 base64 data URL，返回 (mime_type, data)"""
        if not url:
            return None
        match = self._re_data_url.match(url)
        if not match:
            return None
        return match.group("mime"), match.group("data")

    def as_dict(self, value: Any) -> Dict[str, Any]:
        """非字典值（缺失、字符串等）一律视为空字典"""
        return value if isinstance(value, dict) else {}

    def as_list(self, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []

    def first_dict(self, items: Any) -> Dict[str, Any]:
        """列表首个字典元素，缺失时返回空字典"""
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]
        return {}


# 全局单例实例
response_parser = ResponseParser()
