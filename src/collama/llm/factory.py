"""Client factory: one normalized entry point over both backends."""

from __future__ import annotations

import logging
import math

import httpx

from collama.events.bus import EventBus
from collama.types import (
    BackendType,
    ChatResult,
    ChatSettings,
    EventType,
    GenerateSettings,
    RequestCategory,
)

from .accumulator import DeltaMergePolicy
from .base import ChunkCallback, LLMBackend
from .detection import BackendCache
from .ollama import OllamaBackend
from .openai import OpenAIBackend
from .tokenizer import TokenCounter, Tokenizer

_logger = logging.getLogger(__name__)

# hidden provider tokens (chat template, BOS/EOS, ...)
FIXED_OVERHEAD_BUFFER = 20
# tokenizer variance between our counter and the model's
PERCENTAGE_BUFFER = 0.01


class BackendNotDetectedError(RuntimeError):
    """No backend has been detected for the requested category."""


def check_predict_fits_context_length(
    predict: float,
    prompt_tokens: float,
    context_length: float,
) -> bool:
    """Whether ``predict`` output tokens fit next to the prompt.

    required = ceil(predict * 1.01) + 20; fails when it exceeds the window
    left after the prompt, or when ``predict`` alone fills the window.
    """
    predict_tokens = math.ceil(predict)
    current_tokens = math.ceil(prompt_tokens)
    max_tokens = math.floor(context_length)

    if predict_tokens >= max_tokens:
        _logger.info(
            "Requested prediction (%d) exceeds or equals total model limit (%d)",
            predict_tokens, max_tokens,
        )
        return False

    available = max_tokens - current_tokens
    if available <= 0:
        _logger.info("Context full. Current: %d, Limit: %d", current_tokens, max_tokens)
        return False

    # round away float noise: 100 * 1.01 must stay 101
    required = math.ceil(round(predict_tokens * (1 + PERCENTAGE_BUFFER), 6)) + FIXED_OVERHEAD_BUFFER
    if required > available:
        _logger.info(
            "Predicted size (%d) exceeds available context (%d). Current: %d, Limit: %d",
            required, available, current_tokens, max_tokens,
        )
        return False
    return True


def create_backend(
    backend: BackendType,
    event_bus: EventBus | None = None,
    merge_policy: DeltaMergePolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMBackend:
    if backend is BackendType.OLLAMA:
        return OllamaBackend(event_bus=event_bus, transport=transport)
    return OpenAIBackend(event_bus=event_bus, transport=transport, merge_policy=merge_policy)


class LLMClientFactory:
    """Selects the adapter detected for a request category.

    Parameters
    ----------
    category:
        ``COMPLETION`` (fast) or ``INSTRUCTION`` (deliberate).
    cache:
        Detection results; the factory only reads it.
    event_bus:
        Receives user-visible warnings and errors.
    count_tokens:
        Prompt token counter for the ``generate`` pre-flight check.
    merge_policy:
        Tool-call fragment merge policy for the OpenAI-compatible adapter.
    """

    def __init__(
        self,
        category: RequestCategory,
        cache: BackendCache,
        event_bus: EventBus | None = None,
        count_tokens: TokenCounter | None = None,
        merge_policy: DeltaMergePolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._category = category
        self._event_bus = event_bus
        self._count_tokens = count_tokens or Tokenizer.count
        detected = cache.get(category)
        self._backend: LLMBackend | None = None
        if detected.backend is not None:
            self._backend = create_backend(
                detected.backend, event_bus, merge_policy, transport,
            )

    @property
    def backend(self) -> LLMBackend:
        if self._backend is None:
            raise BackendNotDetectedError(
                f"LLM client not initialized: no backend detected for {self._category.value}"
            )
        return self._backend

    async def chat(
        self,
        settings: ChatSettings,
        on_chunk: ChunkCallback | None = None,
    ) -> ChatResult:
        return await self.backend.chat(settings, on_chunk)

    async def generate(self, settings: GenerateSettings) -> str:
        """Generate after a pre-flight headroom check.

        Returns ``""`` without touching the network when the prompt plus the
        requested output does not fit the context window.
        """
        backend = self.backend
        prompt_tokens = self._count_tokens(settings.prompt)
        options = settings.options
        if not check_predict_fits_context_length(
            options.num_predict, prompt_tokens, options.num_ctx,
        ):
            message = (
                f"Prompt ({prompt_tokens} tokens) exceeds available context window "
                f"({options.num_ctx} tokens). Please reduce content."
            )
            _logger.warning(message)
            if self._event_bus:
                await self._event_bus.publish(EventType.USER_ERROR, message=message)
            return ""
        return await backend.generate(settings)
