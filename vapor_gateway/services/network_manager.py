"""Shared HTTP client management for upstream vendor calls."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

import httpx

from ..helpers import info_log, error_log
from ..config import settings


_CONNECTION_POOL_CONFIG: Dict[str, object] = {
    "limits": httpx.Limits(
        max_keepalive_connections=20,
        max_connections=100,
        keepalive_expiry=30,
    ),
    "timeout": httpx.Timeout(
        connect=settings.UPSTREAM_CONNECT_TIMEOUT,
        read=settings.UPSTREAM_READ_TIMEOUT,
        write=30.0,
        pool=10.0,
    ),
    "http2": True,
}


class NetworkManager:
    """Manage the pooled httpx client shared by all vendor clients."""

    def __init__(self, proxy_url: Optional[str] = None) -> None:
        self._proxy_url = proxy_url
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def get_or_create_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                if self._proxy_url:
                    info_log("[CLIENT] 创建代理客户端", proxy=self._proxy_url)
                    self._client = httpx.AsyncClient(proxy=self._proxy_url, **_CONNECTION_POOL_CONFIG)
                else:
                    info_log("[CLIENT] 创建默认客户端（无代理）")
                    self._client = httpx.AsyncClient(**_CONNECTION_POOL_CONFIG)
            return self._client

    async def cleanup_clients(self) -> None:
        async with self._client_lock:
            client = self._client
            self._client = None

        if client is None:
            return
        try:
            await client.aclose()
            info_log("[CLIENT] 客户端已关闭")
        except Exception as exc:  # pragma: no cover - 问题记录即可
            error_log("[CLIENT] 关闭客户端失败", error=str(exc))


network_manager = NetworkManager(settings.UPSTREAM_PROXY)


async def get_http_client() -> httpx.AsyncClient:
    """FastAPI dependency returning the shared upstream client."""
    return await network_manager.get_or_create_client()
