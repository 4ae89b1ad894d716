"""Ollama native API adapter (``/api/chat``, ``/api/generate``).

Streaming chat arrives as JSON lines; every tool call in a chunk is already
complete, so no accumulator is needed.  Ollama does not assign tool-call ids,
they are synthesized as ``call_<n>``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from collama.types import BackendType, ChatResult, ChatSettings, GenerateSettings, ToolCallRequest

from .base import ChunkCallback, LLMBackend, elapsed_since, log_failure, log_request
from .normalizer import normalize_result

_logger = logging.getLogger(__name__)


def to_ollama_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert OpenAI-shaped history to Ollama's shape.

    Ollama expects tool-call arguments as an object, not a JSON string.
    """
    converted: list[dict[str, Any]] = []
    for msg in messages:
        calls = msg.get("tool_calls")
        if not calls:
            converted.append(msg)
            continue
        out_calls = []
        for tc in calls:
            func = tc.get("function", {})
            args = func.get("arguments", {})
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args else {}
                except json.JSONDecodeError:
                    _logger.debug("Sending unparseable tool arguments as empty object: %r", args)
                    args = {}
            out_calls.append({"function": {"name": func.get("name", ""), "arguments": args}})
        converted.append({**msg, "tool_calls": out_calls})
    return converted


class OllamaBackend(LLMBackend):
    """Adapter for the Ollama JSON-lines protocol."""

    backend_type = BackendType.OLLAMA

    async def chat(
        self,
        settings: ChatSettings,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatResult:
        messages = to_ollama_messages(settings.messages)
        log_request(
            settings.endpoint.url, settings.model, settings.think,
            settings.options, settings.stop, json.dumps(messages),
        )
        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": messages,
            "stream": True,
            "think": settings.think,
            "options": {**settings.options.to_dict(), "stop": settings.stop.tokens()},
        }
        if settings.tools:
            payload["tools"] = settings.tools

        start = time.monotonic()
        content = ""
        thinking = ""
        result_tokens = 0
        usage: dict[str, int] = {}
        model_name = settings.model
        tool_calls: list[ToolCallRequest] = []

        try:
            async with self._http_client(settings.endpoint) as client:
                async with client.stream("POST", "/api/chat", json=payload) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            _logger.debug("Skipping non-JSON stream line: %r", line)
                            continue
                        if "error" in data:
                            raise httpx.HTTPError(f"Ollama stream error: {data['error']}")

                        msg = data.get("message") or {}
                        chunk = msg.get("content") or ""
                        if chunk:
                            content += chunk
                            if on_chunk:
                                on_chunk(chunk)
                        if msg.get("thinking"):
                            thinking += msg["thinking"]

                        for tc in msg.get("tool_calls") or []:
                            func = tc.get("function", {})
                            args = func.get("arguments", {})
                            tool_calls.append(
                                ToolCallRequest(
                                    id=tc.get("id") or f"call_{len(tool_calls)}",
                                    name=func.get("name", ""),
                                    arguments_json=args if isinstance(args, str) else json.dumps(args),
                                )
                            )

                        if data.get("done"):
                            model_name = data.get("model", model_name)
                            result_tokens = data.get("eval_count", 0)
                            usage = {
                                "prompt_tokens": data.get("prompt_eval_count", 0),
                                "completion_tokens": result_tokens,
                            }
                            usage["total_tokens"] = usage["prompt_tokens"] + result_tokens
                            duration = data.get("eval_duration", 0) / 1e9
                            await self._report_performance(
                                settings.options, result_tokens, duration, content,
                            )
        except httpx.HTTPError as e:
            log_failure("Ollama chat", settings, content, e)
            raise

        normalized = normalize_result(content, result_tokens, settings.options)
        return ChatResult(
            content=normalized.text,
            tool_calls=tool_calls,
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
            "raw": True,
            "stream": False,
            "options": {**settings.options.to_dict(), "stop": settings.stop.tokens()},
        }
        try:
            async with self._http_client(settings.endpoint) as client:
                resp = await client.post("/api/generate", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log_failure("Ollama generate", settings, "", e)
            raise

        text = data.get("response") or ""
        result_tokens = data.get("eval_count", 0)
        await self._report_performance(
            settings.options, result_tokens, data.get("eval_duration", 0) / 1e9, text,
        )
        return normalize_result(text, result_tokens, settings.options).text
