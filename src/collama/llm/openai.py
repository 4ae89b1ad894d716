"""OpenAI-compatible adapter (``/v1/chat/completions``, ``/v1/completions``).

Streaming chat uses Server-Sent Events.  Tool calls arrive fragmented across
many deltas keyed by ``index`` and are rebuilt by a
:class:`~collama.llm.accumulator.StreamAccumulator`.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from collama.types import BackendType, ChatResult, ChatSettings, GenerateSettings, Options

from .accumulator import DeltaMergePolicy, StreamAccumulator
from .base import ChunkCallback, LLMBackend, elapsed_since, log_failure, log_request
from .normalizer import normalize_result

_logger = logging.getLogger(__name__)

_SSE_PREFIX = "data:"
_SSE_DONE = "[DONE]"


def options_to_openai(options: Options) -> dict[str, Any]:
    """Map generic options onto OpenAI-compatible request fields."""
    return {
        "max_context_length": options.num_ctx,
        "max_tokens": options.num_predict,
        "temperature": options.temperature,
        "top_p": options.top_p,
        "top_k": options.top_k,
    }


class OpenAIBackend(LLMBackend):
    """Adapter for OpenAI-compatible servers (vLLM, llama.cpp, LM Studio, ...)."""

    backend_type = BackendType.OPENAI

    def __init__(
        self,
        *args: Any,
        merge_policy: DeltaMergePolicy | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._merge_policy = merge_policy

    async def chat(
        self,
        settings: ChatSettings,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatResult:
        log_request(
            settings.endpoint.url, settings.model, settings.think,
            settings.options, settings.stop, json.dumps(settings.messages),
        )
        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": settings.messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            "stop": settings.stop.tokens(),
            **options_to_openai(settings.options),
        }
        if settings.tools:
            payload["tools"] = settings.tools

        start = time.monotonic()
        content = ""
        thinking = ""
        result_tokens = 0
        usage: dict[str, int] = {}
        model_name = settings.model
        accumulator = StreamAccumulator(self._merge_policy)

        try:
            async with self._http_client(settings.endpoint) as client:
                async with client.stream(
                    "POST", "/v1/chat/completions", json=payload,
                ) as resp:
                    resp.raise_for_status()
                    async for raw_line in resp.aiter_lines():
                        if not raw_line.startswith(_SSE_PREFIX):
                            continue
                        data_str = raw_line[len(_SSE_PREFIX):].strip()
                        if data_str == _SSE_DONE:
                            break
                        try:
                            data = json.loads(data_str)
                        except json.JSONDecodeError:
                            _logger.debug("Skipping non-JSON SSE payload: %r", data_str)
                            continue

                        model_name = data.get("model") or model_name
                        choices = data.get("choices") or []
                        delta = (choices[0].get("delta") or {}) if choices else {}
                        _logger.debug("Delta: %s", json.dumps(delta))

                        chunk = delta.get("content")
                        if chunk:
                            content += chunk
                            if on_chunk:
                                on_chunk(chunk)
                        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                        if reasoning:
                            thinking += reasoning

                        accumulator.feed(delta)

                        if data.get("usage"):
                            usage = data["usage"]
                            result_tokens = usage.get("completion_tokens") or 0
                            await self._report_performance(
                                settings.options, result_tokens, elapsed_since(start), content,
                            )
        except httpx.HTTPError as e:
            log_failure("OpenAI chat", settings, content, e)
            raise

        normalized = normalize_result(content, result_tokens, settings.options)
        return ChatResult(
            content=normalized.text,
            tool_calls=accumulator.finalize(),
            truncated=normalized.truncated,
            thinking=thinking.strip(),
            usage=usage,
            model=model_name,
            latency_ms=elapsed_since(start) * 1000,
        )

    async def generate(self, settings: GenerateSettings) -> str:
        log_request(
            settings.endpoint.url, settings.model, False,
            settings.options, settings.stop, settings.prompt,
        )
        payload = {
            "model": settings.model,
            "prompt": settings.prompt,
            "stream": False,
            "stop": settings.stop.tokens(),
            **options_to_openai(settings.options),
        }
        start = time.monotonic()
        try:
            async with self._http_client(settings.endpoint) as client:
                resp = await client.post("/v1/completions", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log_failure("OpenAI generate", settings, "", e)
            raise

        choices = data.get("choices") or [{}]
        text = choices[0].get("text") or ""
        usage = data.get("usage") or {}
        result_tokens = usage.get("completion_tokens") or 0
        await self._report_performance(
            settings.options, result_tokens, elapsed_since(start), text,
        )
        return normalize_result(text, result_tokens, settings.options).text
