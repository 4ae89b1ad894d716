"""Backend contract shared by the Ollama and OpenAI-compatible adapters."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx

from collama.events.bus import EventBus
from collama.types import (
    ApiEndpoint,
    BackendType,
    ChatResult,
    ChatSettings,
    EventType,
    GenerateSettings,
    Options,
    Stop,
)

_logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


class LLMBackend(ABC):
    """One wire protocol family.

    Backends are stateless between calls: they never keep history, so the
    caller may rewrite the conversation freely before the next request.
    A transport failure is logged and re-raised; text already passed to
    ``on_chunk`` stays delivered.
    """

    backend_type: BackendType

    def __init__(
        self,
        event_bus: EventBus | None = None,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._event_bus = event_bus
        self._timeout = httpx.Timeout(timeout, connect=30, read=300)
        self._transport = transport

    @abstractmethod
    async def chat(
        self,
        settings: ChatSettings,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatResult:
        """Stream a chat completion, forwarding each new text delta."""

    @abstractmethod
    async def generate(self, settings: GenerateSettings) -> str:
        """Single-prompt, non-streaming generation."""

    def _http_client(self, endpoint: ApiEndpoint) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if endpoint.bearer:
            headers["Authorization"] = f"Bearer {endpoint.bearer}"
        return httpx.AsyncClient(
            base_url=endpoint.url.rstrip("/"),
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _report_performance(
        self, options: Options, result_tokens: int, duration_s: float, result: str,
    ) -> None:
        if log_performance(options.num_predict, result_tokens, duration_s, result):
            if self._event_bus:
                await self._event_bus.publish(
                    EventType.USER_WARNING,
                    message="Output token limit reached - reduce input?",
                )


# ---------------------------------------------------------------------------
# Shared logging
# ---------------------------------------------------------------------------

def log_request(
    url: str,
    model: str,
    think: bool,
    options: Options,
    stop: Stop,
    payload: str,
) -> None:
    _logger.info("Requesting to %s; Model: %s; Think: %s", url, model, think)
    _logger.debug("Options:\n%s", json.dumps(options.to_dict(), indent=2))
    _logger.debug("Stop:\n%s", json.dumps(stop.tokens(), indent=2))
    _logger.debug("Input:\n%s", payload)


def log_performance(
    token_limit: int,
    result_tokens: int,
    duration_s: float,
    result: str,
) -> bool:
    """Log throughput; return True when the output token limit was hit."""
    tps = result_tokens / duration_s if duration_s > 0 else 0.0
    _logger.debug("Output:\n%s", result)
    _logger.info(
        "Receive: tokens [%d]; duration seconds [%.3f]; tokens/sec [%.1f]",
        result_tokens, duration_s, tps,
    )
    if token_limit == result_tokens:
        _logger.warning("Output token limit reached - reduce input?")
        return True
    return False


def log_failure(
    backend: str,
    settings: ChatSettings | GenerateSettings,
    partial: str,
    exc: BaseException,
) -> None:
    """Full diagnostics for a failed request before it propagates."""
    shape: dict[str, Any] = {
        "url": settings.endpoint.url,
        "model": settings.model,
        "options": settings.options.to_dict(),
        "stop": settings.stop.tokens(),
    }
    if isinstance(settings, ChatSettings):
        shape["messages"] = len(settings.messages)
        shape["tools"] = [t.get("function", {}).get("name") for t in settings.tools]
    else:
        shape["prompt_chars"] = len(settings.prompt)
    _logger.error(
        "%s request failed: %s: %s\nRequest: %s\nPartial output (%d chars):\n%s",
        backend, type(exc).__name__, exc, json.dumps(shape), len(partial), partial,
        exc_info=exc,
    )


def elapsed_since(start: float) -> float:
    return time.monotonic() - start
