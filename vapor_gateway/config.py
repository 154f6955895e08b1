"""
FastAPI application configuration module
"""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# 加载.env文件,覆盖电脑自身环境变量
load_dotenv(override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _log_level() -> str:
    level = os.getenv("LOG_LEVEL", "info").lower()
    return level if level in ["false", "info", "debug"] else "info"


class Settings(BaseSettings):
    """Application settings"""

    # Server Configuration
    LISTEN_PORT: int = int(os.getenv("LISTEN_PORT", "8080"))
    # 内存存储按进程隔离，默认单 worker
    UVICORN_WORKERS: int = int(os.getenv("UVICORN_WORKERS", "1"))

    # Logging Configuration - 支持三个等级：false, info, debug
    LOG_LEVEL: str = _log_level()

    # 用户 / API Key / 模型 / 渠道的初始数据文件
    GATEWAY_DATA_FILE: str = os.getenv("GATEWAY_DATA_FILE", "gateway_data.json")

    # Billing Configuration
    PRICE_PRECISION: int = int(os.getenv("PRICE_PRECISION", "6"))
    ADMISSION_OUTPUT_TOKENS: int = int(os.getenv("ADMISSION_OUTPUT_TOKENS", "100"))
    STREAM_FALLBACK_OUTPUT_TOKENS: int = int(os.getenv("STREAM_FALLBACK_OUTPUT_TOKENS", "500"))
    # 客户端中途断开时是否按已累积用量结算
    BILL_ON_DISCONNECT: bool = _env_bool("BILL_ON_DISCONNECT", "true")

    # Vendor Defaults
    OPENAI_DEFAULT_BASE_URL: str = os.getenv("OPENAI_DEFAULT_BASE_URL", "https://api.openai.com/v1")
    ANTHROPIC_DEFAULT_BASE_URL: str = os.getenv("ANTHROPIC_DEFAULT_BASE_URL", "https://api.anthropic.com")
    ANTHROPIC_DEFAULT_VERSION: str = os.getenv("ANTHROPIC_DEFAULT_VERSION", "2023-06-01")
    ANTHROPIC_DEFAULT_MAX_TOKENS: int = int(os.getenv("ANTHROPIC_DEFAULT_MAX_TOKENS", "4096"))
    GEMINI_DEFAULT_BASE_URL: str = os.getenv(
        "GEMINI_DEFAULT_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
    )

    # /v1/models 中无渠道归属时的默认 owned_by
    DEFAULT_OWNED_BY: str = os.getenv("DEFAULT_OWNED_BY", "vapor")

    # Upstream Network Configuration
    UPSTREAM_PROXY: Optional[str] = os.getenv("UPSTREAM_PROXY") or None
    UPSTREAM_CONNECT_TIMEOUT: float = float(os.getenv("UPSTREAM_CONNECT_TIMEOUT", "10"))
    UPSTREAM_READ_TIMEOUT: float = float(os.getenv("UPSTREAM_READ_TIMEOUT", "120"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
