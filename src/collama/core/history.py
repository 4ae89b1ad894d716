"""Typed, append-only conversation history.

Turns are a tagged union on ``role``.  The history refuses a ``tool`` turn
whose ``tool_call_id`` is not among the ``tool_calls`` of the nearest
preceding assistant turn (with only tool turns in between), so a history
built through this class is always valid for both backends.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Union

from collama.types import ToolCallRequest


@dataclass(frozen=True)
class SystemTurn:
    content: str
    role: Literal["system"] = "system"


@dataclass(frozen=True)
class UserTurn:
    content: str
    role: Literal["user"] = "user"


@dataclass(frozen=True)
class AssistantTurn:
    content: str = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    role: Literal["assistant"] = "assistant"


@dataclass(frozen=True)
class ToolTurn:
    content: str
    tool_call_id: str
    role: Literal["tool"] = "tool"


ConversationTurn = Union[SystemTurn, UserTurn, AssistantTurn, ToolTurn]


class HistoryError(ValueError):
    """Raised when an append would break tool-call linkage."""


@dataclass
class ConversationHistory:
    """Ordered log of conversation turns."""

    turns: list[ConversationTurn] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self.turns)

    def __getitem__(self, index: int) -> ConversationTurn:
        return self.turns[index]

    def append(self, turn: ConversationTurn) -> None:
        if isinstance(turn, ToolTurn):
            self._check_tool_turn(turn)
        self.turns.append(turn)

    def add_system(self, content: str) -> None:
        self.append(SystemTurn(content))

    def add_user(self, content: str) -> None:
        self.append(UserTurn(content))

    def add_assistant(
        self, content: str, tool_calls: list[ToolCallRequest] | None = None,
    ) -> None:
        self.append(AssistantTurn(content, tuple(tool_calls or ())))

    def add_tool_result(self, tool_call_id: str, content: str) -> None:
        self.append(ToolTurn(content, tool_call_id))

    def _check_tool_turn(self, turn: ToolTurn) -> None:
        answered: set[str] = set()
        for previous in reversed(self.turns):
            if isinstance(previous, ToolTurn):
                answered.add(previous.tool_call_id)
                continue
            if isinstance(previous, AssistantTurn):
                ids = {c.id for c in previous.tool_calls}
                if turn.tool_call_id not in ids:
                    raise HistoryError(
                        f"tool_call_id {turn.tool_call_id!r} does not match the "
                        f"preceding assistant turn's tool calls"
                    )
                if turn.tool_call_id in answered:
                    raise HistoryError(
                        f"tool_call_id {turn.tool_call_id!r} already answered"
                    )
                return
            break
        raise HistoryError("tool turn without a preceding assistant turn")

    def pending_tool_calls(self) -> list[ToolCallRequest]:
        """Calls of the last assistant turn that have no tool turn yet."""
        answered: set[str] = set()
        for turn in reversed(self.turns):
            if isinstance(turn, ToolTurn):
                answered.add(turn.tool_call_id)
            elif isinstance(turn, AssistantTurn):
                return [c for c in turn.tool_calls if c.id not in answered]
            else:
                break
        return []

    def copy(self) -> ConversationHistory:
        return ConversationHistory(list(self.turns))

    def truncate(self, length: int) -> None:
        """Drop every turn from index ``length`` on (edit-and-resend)."""
        if length < 0:
            raise ValueError("length must be >= 0")
        del self.turns[length:]

    def to_messages(self) -> list[dict[str, Any]]:
        """OpenAI-style message dicts (tool arguments as JSON strings)."""
        messages: list[dict[str, Any]] = []
        for turn in self.turns:
            msg: dict[str, Any] = {"role": turn.role, "content": turn.content}
            if isinstance(turn, AssistantTurn) and turn.tool_calls:
                msg["tool_calls"] = [c.to_wire() for c in turn.tool_calls]
            elif isinstance(turn, ToolTurn):
                msg["tool_call_id"] = turn.tool_call_id
            messages.append(msg)
        return messages

    @classmethod
    def from_messages(cls, messages: list[dict[str, Any]]) -> ConversationHistory:
        """Build a history from OpenAI-style message dicts, validating linkage."""
        history = cls()
        for msg in messages:
            role = msg.get("role")
            content = msg.get("content") or ""
            if role == "system":
                history.add_system(content)
            elif role == "user":
                history.add_user(content)
            elif role == "assistant":
                calls = []
                for raw in msg.get("tool_calls") or []:
                    fn = raw.get("function", {})
                    args = fn.get("arguments", "{}")
                    if not isinstance(args, str):
                        args = json.dumps(args)
                    calls.append(ToolCallRequest(
                        id=raw.get("id", ""), name=fn.get("name", ""), arguments_json=args,
                    ))
                history.add_assistant(content, calls)
            elif role == "tool":
                history.add_tool_result(msg.get("tool_call_id", ""), content)
            else:
                raise HistoryError(f"Unknown role: {role!r}")
        return history
