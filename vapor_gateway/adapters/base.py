"""
格式适配器基类

每个供应商一个适配器，全部为纯函数（无 I/O）：
- to_vendor:      canonical 请求 -> 供应商请求体
- from_vendor:    供应商非流式响应 -> canonical 响应
- reencode_event: 单个供应商流事件 -> 0..n 个 canonical chunk
- to_canonical:   供应商格式的入站请求体 -> canonical 请求体
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..helpers import generate_id
from ..schemas import ChannelConfig, ChatCompletionRequest, TokenUsage, VendorType
from ..services.chunk_builder import chunk_builder
from ..services.response_parser import response_parser


@dataclass
class VendorRequest:
    """发往上游的请求：body 为 JSON 体，model 为上游模型名"""
    body: Dict[str, Any]
    model: str
    stream: bool = False


@dataclass
class StreamState:
    """单个流式响应的累积状态"""
    model: str
    response_id: str = field(default_factory=generate_id)
    created: int = field(default_factory=lambda: int(time.time()))
    # 供应商给出的权威用量，None 表示从未给出
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    # 已输出正文的估算权重（见 token_estimator.text_units）
    output_units: int = 0
    events_seen: int = 0
    finish_reason: Optional[str] = None
    done: bool = False

    def record_usage(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
        """权威用量覆盖运行中的估算，0 视为未给出"""
        if input_tokens:
            self.input_tokens = input_tokens
        if output_tokens:
            self.output_tokens = output_tokens


class VendorAdapter(ABC):
    """供应商格式适配器"""

    vendor: VendorType
    # 小写供应商结束原因 -> canonical 结束原因
    finish_reasons: Dict[str, str] = {}

    def __init__(self):
        self.parser = response_parser
        self.chunk = chunk_builder

    @abstractmethod
    def to_vendor(self, request: ChatCompletionRequest, channel: ChannelConfig) -> VendorRequest:
        """canonical 请求 -> 供应商请求"""

    @abstractmethod
    def from_vendor(self, payload: Any) -> Dict[str, Any]:
        """供应商非流式响应 -> canonical 响应（畸形输入返回空内容，不抛异常）"""

    @abstractmethod
    def reencode_event(self, event: Dict[str, Any], state: StreamState) -> List[Dict[str, Any]]:
        """单个流事件 -> canonical chunk 列表，同时更新 state"""

    @abstractmethod
    def to_canonical(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """供应商格式的入站请求体 -> canonical 请求体"""

    def map_finish_reason(self, reason: Any) -> Optional[str]:
        return self.parser.map_finish_reason(reason, self.finish_reasons)

    def empty_response(self) -> Dict[str, Any]:
        return self.chunk.build_response(
            generate_id(),
            "",
            [self.chunk.build_choice(0, "", None)],
            TokenUsage().to_openai(),
        )

    @staticmethod
    def compact(payload: Dict[str, Any]) -> Dict[str, Any]:
        """去掉值为 None 的字段（缺省参数不发送 null）"""
        return {key: value for key, value in payload.items() if value is not None}
