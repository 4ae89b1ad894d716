"""Reassembly of tool calls streamed as index-keyed deltas.

OpenAI-compatible providers send a tool call in many chunks: each chunk
carries an ``index``, the ``id`` and ``function.name`` usually arrive first
and ``function.arguments`` is spread over many fragments.  Entries are only
complete once the stream has ended; :meth:`StreamAccumulator.finalize` is
the single read point.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from collama.types import ToolCallRequest

_logger = logging.getLogger(__name__)


@dataclass
class PartialToolCall:
    id: str = ""
    name: str = ""
    arguments_json: str = ""


class DeltaMergePolicy(Protocol):
    """Strategy for merging one tool-call fragment into its partial entry."""

    def merge(self, entry: PartialToolCall, fragment: dict[str, Any]) -> None:
        ...


class AppendOnlyPolicy:
    """Every fragment is an incremental append."""

    def merge(self, entry: PartialToolCall, fragment: dict[str, Any]) -> None:
        if fragment.get("id"):
            entry.id = fragment["id"]
        func = fragment.get("function") or {}
        if func.get("name"):
            entry.name += func["name"]
        if func.get("arguments"):
            entry.arguments_json += func["arguments"]


class ReplaceOnNullIdPolicy(AppendOnlyPolicy):
    """Treat an explicit ``"id": null`` fragment as consolidated arguments.

    Some providers finish a call with a summary delta whose id is null and
    whose arguments are the complete JSON.  Appending it would duplicate the
    arguments, so it replaces them instead.
    """

    def merge(self, entry: PartialToolCall, fragment: dict[str, Any]) -> None:
        if "id" in fragment and fragment["id"] is None:
            func = fragment.get("function") or {}
            if func.get("arguments"):
                entry.arguments_json = func["arguments"]
            return
        super().merge(entry, fragment)


class StreamAccumulator:
    """Per-request, index-keyed tool-call assembly buffer.

    Owned by exactly one in-flight adapter call and discarded afterwards.
    """

    def __init__(self, policy: DeltaMergePolicy | None = None) -> None:
        self._policy = policy or ReplaceOnNullIdPolicy()
        self._calls: dict[int, PartialToolCall] = {}

    def feed(self, delta: dict[str, Any]) -> None:
        """Process ``delta.tool_calls`` from a single stream chunk."""
        fragments = delta.get("tool_calls")
        if not fragments:
            return
        for fragment in fragments:
            idx = fragment.get("index", 0)
            entry = self._calls.setdefault(idx, PartialToolCall())
            self._policy.merge(entry, fragment)

    def has_calls(self) -> bool:
        return bool(self._calls)

    def finalize(self) -> list[ToolCallRequest]:
        """Completed calls in index order; empty arguments become ``"{}"``."""
        result: list[ToolCallRequest] = []
        for idx in sorted(self._calls):
            entry = self._calls[idx]
            if not entry.name:
                _logger.warning("Dropping tool call at index %d without a name", idx)
                continue
            result.append(
                ToolCallRequest(
                    id=entry.id or f"call_{idx}",
                    name=entry.name,
                    arguments_json=entry.arguments_json or "{}",
                )
            )
        return result
