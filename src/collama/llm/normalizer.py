"""Post-processing of raw streamed model text.

Models are prompted to answer with code only but wrap the answer in
Markdown fences inconsistently.  Everything that reaches file writers or
diff views goes through :func:`normalize_result` first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from collama.types import Options

_logger = logging.getLogger(__name__)

# Greedy body so the outermost fence pair wins over nested fences.
_FENCED_BLOCK = re.compile(r"```(?:[a-zA-Z0-9_-]+)?\s*\n([\s\S]*)```\s*$")
_OPENING_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\Z")


@dataclass
class NormalizedText:
    text: str
    truncated: bool = False


def strip_fences(text: str) -> str:
    """Remove one surrounding fence pair, or a dangling opening/closing fence."""
    match = _FENCED_BLOCK.search(text)
    if match:
        body = match.group(1)
        return body[:-1] if body.endswith("\n") else body
    text = _OPENING_FENCE.sub("", text, count=1)
    return _CLOSING_FENCE.sub("", text, count=1)


def drop_incomplete_line(text: str, output_tokens: int, options: Options) -> NormalizedText:
    """Cut the last line when generation stopped at the token limit."""
    if output_tokens == options.num_predict and "\n" in text:
        _logger.info("Output reached token limit, cutting last line (probably incomplete)")
        return NormalizedText(text=text.rsplit("\n", 1)[0], truncated=True)
    return NormalizedText(text=text)


def normalize_result(text: str, output_tokens: int, options: Options) -> NormalizedText:
    """Truncation check, fence stripping and trimming, in that order."""
    result = drop_incomplete_line(text, output_tokens, options)
    result.text = strip_fences(result.text).strip()
    return result
