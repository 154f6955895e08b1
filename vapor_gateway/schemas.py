"""
Application data models
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union, Literal, Tuple

from pydantic import BaseModel, Field


class VendorType(str, Enum):
    """上游供应商（按其线协议命名）"""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class ImageUrl(BaseModel):
    """Image URL model"""
    url: str
    detail: Optional[str] = "auto"


class ContentPart(BaseModel):
    """Content part model for OpenAI's new content format"""
    type: str
    text: Optional[str] = None
    image_url: Optional[ImageUrl] = None


class Message(BaseModel):
    """Chat message model"""
    role: Literal["system", "user", "assistant"]
    content: Optional[Union[str, List[ContentPart]]] = None
    name: Optional[str] = None

    class Config:
        extra = "allow"

    def text(self) -> str:
        """按文档顺序拼接所有文本片段"""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text or "" for part in self.content if part.type == "text")


class ChatCompletionRequest(BaseModel):
    """Canonical (OpenAI-compatible) chat completion request"""
    model: str
    messages: List[Message]
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop: Optional[Union[str, List[str]]] = None
    max_tokens: Optional[int] = None

    class Config:
        extra = "allow"

    def split_system(self) -> Tuple[Optional[str], List[Message]]:
        """合并所有 system 消息（按顺序以换行连接），返回 (system, 其余消息)"""
        system_parts = []
        turns = []
        for message in self.messages:
            if message.role == "system":
                system_parts.append(message.text())
            else:
                turns.append(message)
        system = "\n".join(system_parts) if system_parts else None
        return system, turns

    def stop_sequences(self) -> Optional[List[str]]:
        """stop 统一为数组"""
        if self.stop is None:
            return None
        if isinstance(self.stop, str):
            return [self.stop]
        return list(self.stop)


class ModelConfig(BaseModel):
    """模型配置（由管理端维护，核心只读）"""
    model_id: str
    channel_id: str
    upstream_model: Optional[str] = None
    input_price: Decimal = Field(default=Decimal("0"), ge=0)
    output_price: Decimal = Field(default=Decimal("0"), ge=0)
    enabled: bool = True
    provider: Optional[str] = None
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))

    class Config:
        protected_namespaces = ()

    @property
    def outbound_model(self) -> str:
        return self.upstream_model or self.model_id


class ChannelConfig(BaseModel):
    """渠道配置：一个供应商的端点与凭证"""
    channel_id: str
    provider: VendorType
    api_key: str
    base_url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    # 仅 anthropic 使用
    version: Optional[str] = None
    enabled: bool = True


class UserRecord(BaseModel):
    uid: str
    balance: Decimal = Decimal("0")
    is_blocked: bool = False
    total_consumed: Decimal = Decimal("0")


class ApiKeyRecord(BaseModel):
    key: str
    uid: str
    name: str = "default"
    enabled: bool = True
    last_used: Optional[int] = None


class UsageRecord(BaseModel):
    """单次请求的用量账目"""
    user_id: str
    model_id: str
    input_tokens: int
    output_tokens: int
    cost: Decimal
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        protected_namespaces = ()


@dataclass
class TokenUsage:
    """输入/输出 token 计数"""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_openai(self) -> dict:
        return {
            "prompt_tokens": self.input_tokens,
            "completion_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_openai(cls, usage: Optional[dict]) -> "TokenUsage":
        usage = usage or {}
        return cls(
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        )


class Model(BaseModel):
    """Model information for listing"""
    id: str
    object: str = "model"
    created: int
    owned_by: str
    permission: List[dict] = Field(default_factory=list)
    root: Optional[str] = None
    parent: Optional[str] = None


class ModelsResponse(BaseModel):
    """Models list response model"""
    object: str = "list"
    data: List[Model]
