"""Shared data types for collama."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Request settings
# ---------------------------------------------------------------------------

class RequestCategory(enum.Enum):
    """Which configured endpoint a request goes to."""

    COMPLETION = "completion"    # fast, fill-in-the-middle
    INSTRUCTION = "instruction"  # chat / agent


class BackendType(enum.Enum):
    """Wire protocol family spoken by an endpoint."""

    OLLAMA = "ollama"
    OPENAI = "openai"


@dataclass
class Options:
    """Sampling and budget options sent with every request."""

    num_ctx: int = 4096
    num_predict: int = 400
    temperature: float = 0.4
    top_p: float = 0.8
    top_k: int = 20

    def to_dict(self) -> dict[str, Any]:
        return {
            "num_ctx": self.num_ctx,
            "num_predict": self.num_predict,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
        }


@dataclass
class Stop:
    """Stop tokens: model-specific plus mode-specific user stops."""

    model_stop: list[str] = field(default_factory=list)
    user_stop: list[str] = field(default_factory=list)

    def tokens(self) -> list[str]:
        """User stops first, then model stops (transmission order)."""
        return [*self.user_stop, *self.model_stop]


@dataclass
class ApiEndpoint:
    url: str
    bearer: str = ""


@dataclass
class ChatSettings:
    """Everything a backend needs for one ``chat`` call."""

    endpoint: ApiEndpoint
    model: str
    messages: list[dict[str, Any]]
    options: Options = field(default_factory=Options)
    stop: Stop = field(default_factory=Stop)
    tools: list[dict[str, Any]] = field(default_factory=list)
    think: bool = False


@dataclass
class GenerateSettings:
    """Everything a backend needs for one single-prompt ``generate`` call."""

    endpoint: ApiEndpoint
    model: str
    prompt: str
    options: Options = field(default_factory=Options)
    stop: Stop = field(default_factory=Stop)


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None
    items: dict[str, Any] | None = None  # element schema for arrays


@dataclass
class ToolCallRequest:
    """A model-issued tool invocation.

    ``arguments_json`` stays a raw string until dispatch so that malformed
    arguments surface as a tool failure, not a client crash.
    """

    id: str
    name: str
    arguments_json: str = "{}"

    def to_wire(self) -> dict[str, Any]:
        """OpenAI-style ``tool_calls`` entry."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json},
        }


@dataclass
class ToolResult:
    """Result of a tool execution."""

    success: bool
    output: str
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        """Serialized form that is appended to history as a tool turn."""
        if self.success:
            return self.output
        return json.dumps({"error": self.error})


class ToolErrorKind(enum.Enum):
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    EXECUTION_FAILED = "execution_failed"
    TOOL_REPORTED = "tool_reported"


@dataclass
class ToolError:
    kind: ToolErrorKind
    message: str


@dataclass
class ToolOutcome:
    """Explicit success-or-error result of dispatching one tool call.

    ``content`` is always the serialized string for the tool turn, on both
    success and failure.
    """

    content: str
    error: ToolError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# LLM result
# ---------------------------------------------------------------------------

@dataclass
class ChatResult:
    """Normalized result of one streamed ``chat`` call."""

    content: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    truncated: bool = False
    thinking: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""
    latency_ms: float = 0

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by the agent system."""

    # Agent lifecycle
    AGENT_STARTED = "agent.started"
    AGENT_DONE = "agent.done"
    AGENT_CANCELLED = "agent.cancelled"
    AGENT_ROUND_LIMIT = "agent.round_limit"

    # LLM events
    LLM_RESPONSE = "llm.response"
    LLM_ERROR = "llm.error"

    # Tool events
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"

    # User-facing notifications
    USER_WARNING = "user.warning"
    USER_ERROR = "user.error"


@dataclass
class AgentEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
