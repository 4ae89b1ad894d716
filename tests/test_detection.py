"""Tests for backend detection and the detection cache."""

from __future__ import annotations

import json

import httpx

from collama.config import EndpointSpec
from collama.llm.detection import (
    BackendCache,
    detect_backend,
    get_model_context_length,
    get_model_thinking,
    list_models,
)
from collama.types import BackendType, RequestCategory


def _ollama_server(context_length: int = 32768, capabilities: list[str] | None = None):
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": "qwen3:8b"}, {"name": "qwen2.5-coder:3b"}]})
        if request.url.path == "/api/show":
            assert json.loads(request.content) == {"model": "qwen3:8b"}
            return httpx.Response(200, json={
                "model_info": {"general.architecture": "qwen3", "qwen3.context_length": context_length},
                "capabilities": capabilities or ["completion"],
            })
        return httpx.Response(404)

    return httpx.MockTransport(handler), calls


def _openai_server():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": [
                {"id": "other", "max_model_len": 2048},
                {"id": "qwen3:8b", "max_model_len": 16384},
            ]})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _dead_server():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    return httpx.MockTransport(handler)


SPEC = EndpointSpec(url="http://llm.test", model="qwen3:8b")


class TestDetectBackend:
    async def test_ollama_probe_wins(self):
        transport, calls = _ollama_server()
        assert await detect_backend(SPEC, transport) is BackendType.OLLAMA
        assert calls == ["/api/tags"]

    async def test_falls_back_to_openai(self):
        assert await detect_backend(SPEC, _openai_server()) is BackendType.OPENAI

    async def test_nothing_answers(self):
        assert await detect_backend(SPEC, _dead_server()) is None


class TestModelInfo:
    async def test_ollama_context_length(self):
        transport, _ = _ollama_server(context_length=40960)
        assert await get_model_context_length(SPEC, BackendType.OLLAMA, transport) == 40960

    async def test_openai_context_length(self):
        assert await get_model_context_length(SPEC, BackendType.OPENAI, _openai_server()) == 16384

    async def test_context_length_unknown(self):
        assert await get_model_context_length(SPEC, BackendType.OLLAMA, _dead_server()) == 0

    async def test_thinking_capability(self):
        transport, _ = _ollama_server(capabilities=["completion", "tools", "thinking"])
        assert await get_model_thinking(SPEC, transport)

    async def test_thinking_errors_are_false(self):
        assert not await get_model_thinking(SPEC, _dead_server())

    async def test_list_models(self):
        transport, _ = _ollama_server()
        assert await list_models(SPEC, BackendType.OLLAMA, transport) == ["qwen3:8b", "qwen2.5-coder:3b"]
        assert await list_models(SPEC, BackendType.OPENAI, _openai_server()) == ["other", "qwen3:8b"]


class TestBackendCache:
    async def test_detect_caches_result(self):
        transport, calls = _ollama_server(context_length=8192)
        cache = BackendCache(transport=transport)

        first = await cache.detect(RequestCategory.INSTRUCTION, SPEC)
        second = await cache.detect(RequestCategory.INSTRUCTION, SPEC)

        assert first.backend is BackendType.OLLAMA
        assert first.context_length == 8192
        assert second == first
        assert calls == ["/api/tags", "/api/show"]

    async def test_force_redetects(self):
        transport, calls = _ollama_server()
        cache = BackendCache(transport=transport)
        await cache.detect(RequestCategory.INSTRUCTION, SPEC)
        await cache.detect(RequestCategory.INSTRUCTION, SPEC, force=True)
        assert calls.count("/api/tags") == 2

    async def test_undetected_uses_default_context(self):
        cache = BackendCache(default_context_length=2048, transport=_dead_server())
        entry = await cache.detect(RequestCategory.COMPLETION, SPEC)
        assert entry.backend is None
        assert entry.context_length == 2048

    def test_set_and_invalidate(self):
        cache = BackendCache(default_context_length=4096)
        cache.set(RequestCategory.COMPLETION, BackendType.OPENAI)
        cache.set(RequestCategory.INSTRUCTION, BackendType.OLLAMA, 65536)

        assert cache.get(RequestCategory.COMPLETION).context_length == 4096
        assert cache.get(RequestCategory.INSTRUCTION).context_length == 65536

        cache.invalidate(RequestCategory.COMPLETION)
        assert cache.get(RequestCategory.COMPLETION).backend is None
        assert cache.get(RequestCategory.INSTRUCTION).backend is BackendType.OLLAMA

        cache.invalidate()
        assert cache.get(RequestCategory.INSTRUCTION).backend is None
