"""Service layer orchestrating metered chat completions across vendors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..adapters import VendorAdapter, VendorRequest, get_adapter
from ..billing import check_admission, schedule_settlement, settle
from ..config import settings
from ..errors import (
    BadRequestError,
    ForbiddenError,
    ModelUnavailableError,
    UnauthenticatedError,
    UpstreamError,
)
from ..helpers import (
    bind_request_context,
    debug_log,
    error_log,
    info_log,
    json_lib,
    request_stage_log,
    reset_request_context,
    warning_log,
)
from ..kv_store import ConfigStore, CredentialStore, Ledger
from ..request_format import normalize_inbound
from ..schemas import ChannelConfig, ChatCompletionRequest, ModelConfig, TokenUsage, UserRecord
from ..token_estimator import estimate_input_tokens, estimate_text_tokens
from .chunk_builder import DONE_FRAME, chunk_builder
from .response_parser import response_parser
from .stream_reencoder import StreamReencoder
from .vendor_clients import UpstreamStream, VendorClient, create_vendor_client

# 每个请求绑定的日志上下文字段
REQUEST_CONTEXT_KEYS = ("request_id", "model", "user", "channel", "vendor", "mode")


class RequestStage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    MODEL_RESOLVED = "model_resolved"
    ADMISSION_CHECKED = "admission_checked"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    STREAMING = "streaming"
    SETTLING = "settling"
    DONE = "done"
    FAILED = "failed"


def stage_log(stage: RequestStage, message: str, **kwargs) -> None:
    request_stage_log(stage.value, message, **kwargs)


@dataclass
class RequestContext:
    """一次已通过准入检查、待发往上游的请求"""
    request: ChatCompletionRequest
    user: UserRecord
    model: ModelConfig
    channel: ChannelConfig
    adapter: VendorAdapter
    vendor_client: VendorClient
    vendor_request: VendorRequest
    estimated_input_tokens: int

    @property
    def model_id(self) -> str:
        return self.request.model


class GatewayService:
    """Encapsulate the gateway workflow independent of FastAPI layer."""

    def __init__(self) -> None:
        self.parser = response_parser
        self.chunk = chunk_builder

    async def authenticate(self, store: CredentialStore, authorization: Optional[str]) -> UserRecord:
        if not authorization or not authorization.startswith("Bearer "):
            raise UnauthenticatedError("缺少 API Key")

        api_key = authorization[7:].strip()
        if not api_key:
            raise UnauthenticatedError("缺少 API Key")

        user = await store.validate_api_key(api_key)
        if user is None:
            raise UnauthenticatedError("API Key 无效或已禁用")
        if user.is_blocked:
            raise ForbiddenError("账户已被封禁")

        bind_request_context(user=user.uid)
        stage_log(RequestStage.AUTHENTICATED, "鉴权通过")
        return user

    def parse_request(self, raw_body: bytes) -> ChatCompletionRequest:
        """解析请求体（支持 Anthropic / Gemini 形态的入站请求）"""
        try:
            body = json_lib.loads(raw_body)
        except ValueError:
            raise BadRequestError("请求体不是合法的 JSON")
        if not isinstance(body, dict):
            raise BadRequestError("请求体必须是 JSON 对象")

        body = normalize_inbound(body)
        model = body.get("model")
        if not isinstance(model, str) or not model.strip():
            raise BadRequestError("缺少 model 参数")

        try:
            request = ChatCompletionRequest.model_validate(body)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise BadRequestError(f"请求参数无效: {location} {first.get('msg')}")

        debug_log("客户端请求体详情", message_count=len(request.messages), stream=bool(request.stream))
        return request

    async def resolve_model(self, store: ConfigStore, model_id: str) -> Tuple[ModelConfig, ChannelConfig]:
        model = await store.get_model(model_id)
        if model is None or not model.enabled:
            raise ModelUnavailableError(f"模型 {model_id} 不存在或未启用")

        channel = await store.get_channel(model.channel_id)
        if channel is None or not channel.enabled:
            raise ModelUnavailableError(f"模型 {model_id} 不存在或未启用")

        bind_request_context(channel=channel.channel_id, vendor=channel.provider.value)
        stage_log(RequestStage.MODEL_RESOLVED, "模型与渠道已解析", upstream_model=model.outbound_model)
        return model, channel

    async def prepare(
        self,
        store: ConfigStore,
        http_client: httpx.AsyncClient,
        request: ChatCompletionRequest,
        user: UserRecord,
    ) -> RequestContext:
        """解析模型、准入检查、转换为供应商请求"""
        model, channel = await self.resolve_model(store, request.model)

        estimated_input_tokens = estimate_input_tokens(request)
        estimated_cost = check_admission(user, model, estimated_input_tokens)
        stage_log(
            RequestStage.ADMISSION_CHECKED,
            "余额准入检查通过",
            estimated_input_tokens=estimated_input_tokens,
            estimated_cost=str(estimated_cost),
        )

        adapter = get_adapter(channel.provider)
        outbound = request.model_copy(update={"model": model.outbound_model})
        return RequestContext(
            request=request,
            user=user,
            model=model,
            channel=channel,
            adapter=adapter,
            vendor_client=create_vendor_client(channel, http_client),
            vendor_request=adapter.to_vendor(outbound, channel),
            estimated_input_tokens=estimated_input_tokens,
        )

    async def handle_non_stream_request(self, context: RequestContext, ledger: Ledger) -> dict:
        bind_request_context(mode="non_stream")
        stage_log(RequestStage.DISPATCHED, "向上游发起非流式请求")
        body, content_type = await context.vendor_client.complete(context.vendor_request)

        try:
            payload = json_lib.loads(body)
        except ValueError:
            warning_log("[UPSTREAM] 上游响应不是合法的 JSON", content_type=content_type, body=body[:200])
            payload = None

        result = context.adapter.from_vendor(payload)
        # 客户端始终看到自己请求的模型名
        result["model"] = context.model_id

        usage = TokenUsage.from_openai(result.get("usage"))
        if not usage.input_tokens:
            usage.input_tokens = context.estimated_input_tokens
        if not usage.output_tokens:
            text = "".join(choice["message"]["content"] or "" for choice in result["choices"])
            usage.output_tokens = estimate_text_tokens(text)
        result["usage"] = usage.to_openai()
        stage_log(
            RequestStage.COMPLETED,
            "非流式结果已生成",
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

        await settle(ledger, context.user.uid, context.model_id, context.model, usage)
        stage_log(RequestStage.DONE, "请求完成")
        return result

    async def open_stream(self, context: RequestContext, ledger: Ledger) -> AsyncIterator[str]:
        """打开上游流（状态码在此检查），返回 canonical SSE 帧生成器"""
        bind_request_context(mode="stream")
        stage_log(RequestStage.DISPATCHED, "向上游发起流式请求")
        upstream = await context.vendor_client.complete_streaming(context.vendor_request)
        stage_log(RequestStage.STREAMING, "上游流已建立，开始重编码")
        return self._stream_frames(context, ledger, upstream)

    async def _stream_frames(
        self,
        context: RequestContext,
        ledger: Ledger,
        upstream: UpstreamStream,
    ) -> AsyncIterator[str]:
        reencoder = StreamReencoder(
            context.adapter,
            context.model_id,
            fallback_input_tokens=context.estimated_input_tokens,
        )
        finished = False
        try:
            try:
                async for data in upstream:
                    for frame in reencoder.feed(data):
                        yield frame
                    if reencoder.done:
                        break
                for frame in reencoder.finish():
                    yield frame
            except UpstreamError as e:
                error_log("[STREAM] 上游流中断", error=e.message)
                yield self.chunk.frame(self.chunk.build_error_chunk(e.message))
                yield DONE_FRAME
            finished = True
        finally:
            # 先登记结算，关闭上游连接时被取消也不会漏账
            if finished or settings.BILL_ON_DISCONNECT:
                usage = reencoder.usage()
                stage_log(
                    RequestStage.SETTLING,
                    "流式响应结束，后台结算",
                    finished=finished,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                )
                schedule_settlement(ledger, context.user.uid, context.model_id, context.model, usage)
            else:
                info_log("[STREAM] 客户端已断开，跳过结算")
            try:
                await upstream.aclose()
            finally:
                stage_log(RequestStage.DONE, "流式上下文清理")
                reset_request_context(*REQUEST_CONTEXT_KEYS)


gateway_service = GatewayService()
