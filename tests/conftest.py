"""
Shared pytest configuration and fixtures.

Upstream vendors are replaced by an httpx.MockTransport; the app is driven
in-process through httpx.ASGITransport with FastAPI dependency_overrides.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import httpx
import pytest

from main import app
from vapor_gateway.kv_store import MemoryKVStore, get_kv_store
from vapor_gateway.services.network_manager import get_http_client

SEED_DATA = {
    "users": [
        {"uid": "u_rich", "balance": "10"},
        {"uid": "u_poor", "balance": "0.001"},
        {"uid": "u_blocked", "balance": "100", "is_blocked": True},
    ],
    "api_keys": [
        {"key": "sk-rich", "uid": "u_rich"},
        {"key": "sk-poor", "uid": "u_poor"},
        {"key": "sk-blocked", "uid": "u_blocked"},
        {"key": "sk-disabled", "uid": "u_rich", "enabled": False},
    ],
    "channels": [
        {"channel_id": "anthropic-main", "provider": "anthropic", "api_key": "ant-key"},
        {"channel_id": "openai-main", "provider": "openai", "api_key": "oai-key",
         "headers": {"OpenAI-Organization": "org-1"}},
        {"channel_id": "gemini-main", "provider": "gemini", "api_key": "gem-key"},
        {"channel_id": "closed", "provider": "openai", "api_key": "x", "enabled": False},
    ],
    "models": [
        {"model_id": "gpt-4o", "channel_id": "anthropic-main", "upstream_model": "claude-3-5-sonnet",
         "input_price": "5", "output_price": "15", "created_at": 1700000000000},
        {"model_id": "gpt-4o-mini", "channel_id": "openai-main",
         "input_price": "0.15", "output_price": "0.6", "provider": "openai"},
        {"model_id": "gemini-flash", "channel_id": "gemini-main", "upstream_model": "gemini-1.5-flash",
         "input_price": "0.075", "output_price": "0.3"},
        {"model_id": "retired", "channel_id": "openai-main", "enabled": False},
        {"model_id": "orphan", "channel_id": "closed"},
    ],
}


@pytest.fixture()
def store() -> MemoryKVStore:
    kv_store = MemoryKVStore()
    kv_store.load_data(SEED_DATA)
    return kv_store


@dataclass
class FakeUpstream:
    """记录发往上游的请求，并由 handler 生成响应"""
    handler: Optional[Callable[[httpx.Request], httpx.Response]] = None
    requests: List[httpx.Request] = field(default_factory=list)

    def respond(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            raise AssertionError("upstream should not be called")
        return self.handler(request)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def upstream_client(upstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.respond))


@pytest.fixture()
def gateway_app(store, upstream_client):
    app.dependency_overrides[get_kv_store] = lambda: store
    app.dependency_overrides[get_http_client] = lambda: upstream_client
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def api_client(gateway_app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=gateway_app), base_url="http://gateway.test")

