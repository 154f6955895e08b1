"""
Gateway API endpoints
"""

import time
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import StreamingResponse

from .config import settings
from .errors import GatewayError
from .helpers import (
    bind_request_context,
    error_log,
    generate_id,
    request_stage_log,
    reset_request_context,
)
from .kv_store import MemoryKVStore, get_kv_store
from .schemas import Model, ModelsResponse
from .services.gateway_service import REQUEST_CONTEXT_KEYS, gateway_service
from .services.network_manager import get_http_client

router = APIRouter()

service = gateway_service


@router.get("/v1/models")
async def list_models(store: MemoryKVStore = Depends(get_kv_store)):
    """List enabled models (no API key required)"""
    current_time = int(time.time())
    data = []
    for model in await store.list_models():
        if not model.enabled:
            continue
        owned_by = model.provider
        if not owned_by:
            channel = await store.get_channel(model.channel_id)
            owned_by = channel.provider.value if channel else settings.DEFAULT_OWNED_BY
        data.append(Model(
            id=model.model_id,
            created=model.created_at // 1000 or current_time,
            owned_by=owned_by,
            root=model.model_id,
        ))
    return ModelsResponse(data=data)


@router.post("/v1/chat/completions")
@router.post("/v1/messages")
async def chat_completions(
    request: Request,
    authorization: Optional[str] = Header(None),
    store: MemoryKVStore = Depends(get_kv_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """处理 chat completion 请求，支持流式和非流式"""
    bind_request_context(request_id=generate_id("req-"))
    request_stage_log("received", "收到客户端请求", path=request.url.path)

    try:
        user = await service.authenticate(store, authorization)
        chat_request = service.parse_request(await request.body())
        bind_request_context(model=chat_request.model)

        context = await service.prepare(store, http_client, chat_request, user)

        if not chat_request.stream:
            try:
                return await service.handle_non_stream_request(context, store)
            finally:
                reset_request_context(*REQUEST_CONTEXT_KEYS)

        frames = await service.open_stream(context, store)
        streaming_response = StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        request_stage_log("streaming", "流式响应已交给 FastAPI", media_type="text/event-stream")
        return streaming_response

    except GatewayError as e:
        request_stage_log("failed", "请求失败", kind=e.code, status_code=e.status_code, reason=e.message)
        reset_request_context(*REQUEST_CONTEXT_KEYS)
        raise
    except Exception as e:
        error_log("处理请求时发生错误", error=str(e))
        request_stage_log("failed", "请求失败", kind="internal_error")
        reset_request_context(*REQUEST_CONTEXT_KEYS)
        raise GatewayError(f"Internal server error: {str(e)}")
