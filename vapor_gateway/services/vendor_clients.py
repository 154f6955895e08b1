"""
上游供应商 HTTP 客户端

每个客户端只负责传输层：鉴权头形态、版本头、端点路径模板。
不做重试；非 2xx 与传输失败统一抛出 UpstreamError。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Tuple, Type

import httpx
from furl import furl

from ..adapters.base import VendorRequest
from ..config import settings
from ..errors import UpstreamError
from ..helpers import debug_log, error_log, perf_timer
from ..schemas import ChannelConfig, VendorType


class UpstreamStream:
    """已通过状态检查的上游字节流"""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamError(f"上游流读取失败: {exc}") from exc

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()


class VendorClient(ABC):
    """供应商客户端基类"""

    vendor: VendorType
    default_base_url: str = ""

    def __init__(self, channel: ChannelConfig, http_client: httpx.AsyncClient) -> None:
        self.channel = channel
        self.http_client = http_client

    @property
    def base_url(self) -> str:
        return self.channel.base_url or self.default_base_url

    @abstractmethod
    def build_url(self, vendor_request: VendorRequest) -> str:
        """端点 URL（含需要的查询参数）"""

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.auth_headers())
        headers.update(self.channel.headers or {})
        return headers

    def _build_request(self, vendor_request: VendorRequest) -> httpx.Request:
        return self.http_client.build_request(
            "POST",
            self.build_url(vendor_request),
            json=vendor_request.body,
            headers=self.build_headers(),
        )

    def _upstream_error(self, status_code: int, body: str) -> UpstreamError:
        error_log(
            "[UPSTREAM] 上游返回错误",
            vendor=self.vendor.value,
            status_code=status_code,
            error_detail=body[:200],
        )
        return UpstreamError(
            f"上游 API 错误: {status_code} - {body[:500]}",
            upstream_status=status_code,
            upstream_body=body,
        )

    def _transport_error(self, exc: httpx.HTTPError) -> UpstreamError:
        error_log("[UPSTREAM] 上游请求失败", vendor=self.vendor.value, error=str(exc))
        return UpstreamError(f"上游请求失败: {exc}")

    async def complete(self, vendor_request: VendorRequest) -> Tuple[bytes, str]:
        """非流式：返回 (响应体, content-type)"""
        request = self._build_request(vendor_request)
        with perf_timer(f"{self.vendor.value} complete"):
            try:
                response = await self.http_client.send(request)
            except httpx.HTTPError as exc:
                raise self._transport_error(exc) from exc

        if not response.is_success:
            raise self._upstream_error(response.status_code, response.text)
        return response.content, response.headers.get("content-type", "application/json")

    async def complete_streaming(self, vendor_request: VendorRequest) -> UpstreamStream:
        """流式：打开上游流并检查状态码，返回字节流"""
        request = self._build_request(vendor_request)
        with perf_timer(f"{self.vendor.value} TTFB"):
            try:
                response = await self.http_client.send(request, stream=True)
            except httpx.HTTPError as exc:
                raise self._transport_error(exc) from exc

        if not response.is_success:
            body = await response.aread()
            await response.aclose()
            raise self._upstream_error(response.status_code, body.decode("utf-8", errors="ignore"))

        debug_log("[UPSTREAM] 上游流已建立", vendor=self.vendor.value, status_code=response.status_code)
        return UpstreamStream(response)


class OpenAIClient(VendorClient):
    vendor = VendorType.OPENAI
    default_base_url = settings.OPENAI_DEFAULT_BASE_URL

    def build_url(self, vendor_request: VendorRequest) -> str:
        return furl(self.base_url).add(path=["chat", "completions"]).url

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.channel.api_key}"}


class AnthropicClient(VendorClient):
    vendor = VendorType.ANTHROPIC
    default_base_url = settings.ANTHROPIC_DEFAULT_BASE_URL

    def build_url(self, vendor_request: VendorRequest) -> str:
        return furl(self.base_url).add(path=["v1", "messages"]).url

    def auth_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.channel.api_key,
            "anthropic-version": self.channel.version or settings.ANTHROPIC_DEFAULT_VERSION,
        }


class GeminiClient(VendorClient):
    vendor = VendorType.GEMINI
    default_base_url = settings.GEMINI_DEFAULT_BASE_URL

    def build_url(self, vendor_request: VendorRequest) -> str:
        # 上游模型名在路径中，凭证走查询参数
        action = "streamGenerateContent" if vendor_request.stream else "generateContent"
        args = {"key": self.channel.api_key}
        if vendor_request.stream:
            args["alt"] = "sse"
        return furl(self.base_url).add(path=["models", f"{vendor_request.model}:{action}"], args=args).url


VENDOR_CLIENTS: Dict[VendorType, Type[VendorClient]] = {
    VendorType.OPENAI: OpenAIClient,
    VendorType.ANTHROPIC: AnthropicClient,
    VendorType.GEMINI: GeminiClient,
}

assert set(VENDOR_CLIENTS) == set(VendorType), "every VendorType needs a client"


def create_vendor_client(channel: ChannelConfig, http_client: httpx.AsyncClient) -> VendorClient:
    return VENDOR_CLIENTS[channel.provider](channel, http_client)
