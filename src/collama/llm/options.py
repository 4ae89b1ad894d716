"""Per-mode option and stop-token presets."""

from __future__ import annotations

from collama.config import CollamaConfig
from collama.types import Options, Stop

_INSTRUCT_PREDICT = 16384


def _completion_predict(config: CollamaConfig) -> int:
    base = config.tokens_predict_completion
    if config.suggest_mode == "multiline":
        return base // 2
    if config.suggest_mode == "inline":
        return base // 4
    return base


def build_completion_options(config: CollamaConfig, context_length: int) -> Options:
    return Options(
        num_ctx=context_length,
        num_predict=_completion_predict(config),
        temperature=0.4,
        top_p=0.8,
        top_k=20,
    )


def build_instruction_options(context_length: int) -> Options:
    return Options(
        num_ctx=context_length,
        num_predict=_INSTRUCT_PREDICT,
        temperature=0.8,
        top_p=0.95,
        top_k=40,
    )


def build_commit_options(context_length: int) -> Options:
    return Options(
        num_ctx=context_length,
        num_predict=_INSTRUCT_PREDICT,
        temperature=0.3,
        top_p=0.95,
        top_k=40,
    )


def build_agent_options(context_length: int) -> Options:
    """Low temperature: tool arguments must be precise."""
    return Options(
        num_ctx=context_length,
        num_predict=_INSTRUCT_PREDICT,
        temperature=0.1,
        top_p=0.9,
        top_k=20,
    )


def empty_stop() -> Stop:
    return Stop()


def build_completion_stop(config: CollamaConfig, model_stop: list[str]) -> Stop:
    """Stops for fill-in-the-middle completion.

    Inline suggestions end at the first line break, multiline ones at the
    first blank line, multiblock ones only at the model's own stop tokens.
    """
    if config.suggest_mode == "inline":
        user_stop = ["\n", "\r\n"]
    elif config.suggest_mode == "multiline":
        user_stop = ["\n\n", "\r\n\r\n"]
    else:
        user_stop = []
    return Stop(model_stop=list(model_stop), user_stop=user_stop)
