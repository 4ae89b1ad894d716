"""Prompt token counting for pre-flight context checks."""

from __future__ import annotations

import logging
from typing import Callable

import tiktoken

_logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

# gpt-4o encoding; close enough to local model tokenizers for headroom checks
_ENCODING_NAME = "o200k_base"


class Tokenizer:
    """Lazily loaded, process-wide tiktoken encoder."""

    _encoding: tiktoken.Encoding | None = None

    @classmethod
    def _get_encoding(cls) -> tiktoken.Encoding:
        if cls._encoding is None:
            _logger.debug("Loading tiktoken encoding %s", _ENCODING_NAME)
            cls._encoding = tiktoken.get_encoding(_ENCODING_NAME)
        return cls._encoding

    @classmethod
    def count(cls, text: str) -> int:
        return len(cls._get_encoding().encode(text, disallowed_special=()))
