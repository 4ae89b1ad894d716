"""LLM backends, detection and the client factory."""

from collama.llm.accumulator import (
    AppendOnlyPolicy,
    DeltaMergePolicy,
    ReplaceOnNullIdPolicy,
    StreamAccumulator,
)
from collama.llm.base import LLMBackend
from collama.llm.detection import BackendCache
from collama.llm.factory import (
    BackendNotDetectedError,
    LLMClientFactory,
    check_predict_fits_context_length,
)
from collama.llm.normalizer import normalize_result, strip_fences
from collama.llm.ollama import OllamaBackend
from collama.llm.openai import OpenAIBackend

__all__ = [
    "AppendOnlyPolicy",
    "BackendCache",
    "BackendNotDetectedError",
    "DeltaMergePolicy",
    "LLMBackend",
    "LLMClientFactory",
    "OllamaBackend",
    "OpenAIBackend",
    "ReplaceOnNullIdPolicy",
    "StreamAccumulator",
    "check_predict_fits_context_length",
    "normalize_result",
    "strip_fences",
]
