"""Simple (non-agent) request path: completion, chat, commit message."""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from collama.config import CollamaConfig
from collama.core.history import ConversationHistory
from collama.core.prompts import OpenFile, commit_message_prompt, find_model_config
from collama.events.bus import EventBus
from collama.llm.base import ChunkCallback
from collama.llm.detection import BackendCache, get_model_thinking
from collama.llm.factory import LLMClientFactory
from collama.llm.options import (
    build_commit_options,
    build_completion_options,
    build_completion_stop,
    build_instruction_options,
    empty_stop,
)
from collama.llm.tokenizer import TokenCounter
from collama.types import (
    BackendType,
    ChatResult,
    ChatSettings,
    EventType,
    GenerateSettings,
    Options,
    RequestCategory,
)

_logger = logging.getLogger(__name__)


def _context_length(config: CollamaConfig, cache: BackendCache, category: RequestCategory) -> int:
    return cache.get(category).context_length or config.tokens_receive_default


async def request_completion(
    config: CollamaConfig,
    cache: BackendCache,
    prefix: str,
    suffix: str = "",
    open_files: Sequence[OpenFile] = (),
    event_bus: EventBus | None = None,
    count_tokens: TokenCounter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Fill-in-the-middle completion between ``prefix`` and ``suffix``.

    Returns ``""`` when the configured model has no FIM template or the
    prompt does not fit the context window.
    """
    spec = config.completion
    model_cfg = find_model_config(spec.model)
    if model_cfg is None:
        message = f"Model {spec.model!r} is not supported for completion"
        _logger.warning(message)
        if event_bus:
            await event_bus.publish(EventType.USER_ERROR, message=message)
        return ""

    factory = LLMClientFactory(
        RequestCategory.COMPLETION, cache,
        event_bus=event_bus, count_tokens=count_tokens, transport=transport,
    )
    settings = GenerateSettings(
        endpoint=spec.to_endpoint(),
        model=spec.model,
        prompt=model_cfg.build_prompt(open_files, prefix, suffix),
        options=build_completion_options(
            config, _context_length(config, cache, RequestCategory.COMPLETION),
        ),
        stop=build_completion_stop(config, list(model_cfg.stop)),
    )
    return await factory.generate(settings)


async def request_chat(
    config: CollamaConfig,
    cache: BackendCache,
    history: ConversationHistory,
    on_chunk: ChunkCallback | None = None,
    options: Options | None = None,
    think: bool | None = None,
    event_bus: EventBus | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatResult:
    """One streamed chat turn on the instruction endpoint, without tools.

    ``think`` defaults to the model's advertised capability on Ollama and to
    False elsewhere.
    """
    spec = config.instruction
    if think is None:
        think = False
        if cache.get(RequestCategory.INSTRUCTION).backend is BackendType.OLLAMA:
            think = await get_model_thinking(spec, transport)

    factory = LLMClientFactory(
        RequestCategory.INSTRUCTION, cache, event_bus=event_bus, transport=transport,
    )
    settings = ChatSettings(
        endpoint=spec.to_endpoint(),
        model=spec.model,
        messages=history.to_messages(),
        options=options or build_instruction_options(
            _context_length(config, cache, RequestCategory.INSTRUCTION),
        ),
        stop=empty_stop(),
        think=think,
    )
    return await factory.chat(settings, on_chunk)


async def request_commit_message(
    config: CollamaConfig,
    cache: BackendCache,
    diff: str,
    event_bus: EventBus | None = None,
    count_tokens: TokenCounter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Conventional-commit message for ``diff``; ``""`` if it does not fit."""
    spec = config.instruction
    factory = LLMClientFactory(
        RequestCategory.INSTRUCTION, cache,
        event_bus=event_bus, count_tokens=count_tokens, transport=transport,
    )
    settings = GenerateSettings(
        endpoint=spec.to_endpoint(),
        model=spec.model,
        prompt=commit_message_prompt(diff),
        options=build_commit_options(
            _context_length(config, cache, RequestCategory.INSTRUCTION),
        ),
        stop=empty_stop(),
    )
    return await factory.generate(settings)
