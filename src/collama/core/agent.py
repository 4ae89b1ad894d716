"""Agent loop: request, inspect, execute tools, repeat.

    REQUESTING → INSPECTING → (EXECUTING → REQUESTING)* → DONE

The loop owns a copy of the caller's history for its whole run.  Tool calls
of one assistant turn run sequentially in the order received, and their
tool turns are appended in that same order.  Tool failures come back from
the registry as error payloads and the loop continues; transport errors
from the backend propagate and end the run.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from collama.core.history import ConversationHistory
from collama.events.bus import EventBus
from collama.llm.base import ChunkCallback
from collama.llm.factory import LLMClientFactory
from collama.tools.registry import ToolRegistry
from collama.types import (
    ApiEndpoint,
    ChatResult,
    ChatSettings,
    EventType,
    Options,
    Stop,
    ToolCallRequest,
)

_logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 25

_BACKTICK_RUN = re.compile(r"`+")


class AgentState(enum.Enum):
    REQUESTING = "requesting"
    INSPECTING = "inspecting"
    EXECUTING = "executing"
    DONE = "done"


class CancellationToken:
    """Caller-owned flag checked before every request."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class AgentRun:
    """Outcome of one :meth:`Agent.run`."""

    history: ConversationHistory
    rounds: int
    content: str
    cancelled: bool = False
    round_limit_reached: bool = False
    state: AgentState = AgentState.REQUESTING


def thinking_block(thinking: str) -> str:
    """Wrap reasoning text in a fence longer than any backtick run inside it."""
    longest = max((len(m) for m in _BACKTICK_RUN.findall(thinking)), default=0)
    fence = "`" * max(3, longest + 1)
    return f"\n{fence}Think: Reasoning\n{thinking}\n{fence}\n\n"


def tool_announcement(call: ToolCallRequest) -> str:
    """Fenced ``Tool: <name>`` block with pretty-printed arguments."""
    try:
        args: Any = json.loads(call.arguments_json) if call.arguments_json.strip() else {}
        pretty = json.dumps(args, indent=2)
    except json.JSONDecodeError:
        args, pretty = call.arguments_json, call.arguments_json
    if not args:
        return "\n\n"
    return f"\n\n```Tool: {call.name}\n{pretty}\n```\n\n"


class Agent:
    """Tool-calling conversation loop.

    Parameters
    ----------
    client:
        Client factory for the instruction category.
    registry:
        Tools offered to the model and executed on its behalf.
    endpoint, model:
        Where the chat requests go.
    options:
        Fixed per-mode options (see :func:`collama.llm.options.build_agent_options`).
    max_rounds:
        Maximum number of requests per run.  When the last allowed response
        still asks for tools, those tools are executed and the loop stops.
    event_bus:
        Receives lifecycle and tool events (optional).
    """

    def __init__(
        self,
        client: LLMClientFactory,
        registry: ToolRegistry,
        endpoint: ApiEndpoint,
        model: str,
        options: Options,
        stop: Stop | None = None,
        think: bool = False,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        event_bus: EventBus | None = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        self._client = client
        self._registry = registry
        self._endpoint = endpoint
        self._model = model
        self._options = options
        self._stop = stop or Stop()
        self._think = think
        self._max_rounds = max_rounds
        self._event_bus = event_bus or EventBus()

    async def run(
        self,
        history: ConversationHistory,
        on_chunk: ChunkCallback,
        cancel: CancellationToken | None = None,
    ) -> AgentRun:
        """Drive the loop until the model answers without tool calls.

        ``history`` is not modified; the extended copy is returned in
        :class:`AgentRun`.  Text reaches ``on_chunk`` while it streams.
        """
        run = AgentRun(history=history.copy(), rounds=0, content="")
        tools = self._registry.get_definitions()
        await self._event_bus.publish(
            EventType.AGENT_STARTED, model=self._model, turns=len(history),
        )

        while run.state is not AgentState.DONE:
            if run.state is AgentState.REQUESTING:
                if cancel is not None and cancel.cancelled:
                    _logger.info("Agent cancelled after %d rounds", run.rounds)
                    run.cancelled = True
                    run.state = AgentState.DONE
                    break
                result = await self._request(run, tools, on_chunk)
                run.state = AgentState.INSPECTING

            elif run.state is AgentState.INSPECTING:
                if not result.has_tool_calls:
                    run.history.add_assistant(result.content)
                    run.content = result.content
                    run.state = AgentState.DONE
                else:
                    run.history.add_assistant(result.content, result.tool_calls)
                    run.state = AgentState.EXECUTING

            elif run.state is AgentState.EXECUTING:
                for call in result.tool_calls:
                    await self._execute(run, call, on_chunk)
                on_chunk("\n")
                if run.rounds >= self._max_rounds:
                    _logger.warning(
                        "Agent stopped at round limit (%d) with tools still requested",
                        self._max_rounds,
                    )
                    run.round_limit_reached = True
                    await self._event_bus.publish(
                        EventType.AGENT_ROUND_LIMIT, rounds=run.rounds,
                    )
                    run.state = AgentState.DONE
                else:
                    run.state = AgentState.REQUESTING

        await self._event_bus.publish(
            EventType.AGENT_CANCELLED if run.cancelled else EventType.AGENT_DONE,
            rounds=run.rounds,
            response=run.content[:500],
        )
        return run

    async def _request(
        self,
        run: AgentRun,
        tools: list[dict[str, Any]],
        on_chunk: ChunkCallback,
    ) -> ChatResult:
        run.rounds += 1
        settings = ChatSettings(
            endpoint=self._endpoint,
            model=self._model,
            messages=run.history.to_messages(),
            options=self._options,
            stop=self._stop,
            tools=tools,
            think=self._think,
        )
        try:
            result = await self._client.chat(settings, on_chunk)
        except Exception as e:
            await self._event_bus.publish(
                EventType.LLM_ERROR, round=run.rounds, error=f"{type(e).__name__}: {e}",
            )
            raise

        await self._event_bus.publish(
            EventType.LLM_RESPONSE,
            round=run.rounds,
            model=result.model,
            tool_calls=len(result.tool_calls),
            content_length=len(result.content),
            latency_ms=result.latency_ms,
        )
        if result.thinking:
            on_chunk(thinking_block(result.thinking))
        return result

    async def _execute(
        self, run: AgentRun, call: ToolCallRequest, on_chunk: ChunkCallback,
    ) -> None:
        on_chunk(tool_announcement(call))
        await self._event_bus.publish(
            EventType.TOOL_EXECUTING, tool=call.name, call_id=call.id,
        )
        outcome = await self._registry.dispatch(call)
        if outcome.ok:
            await self._event_bus.publish(
                EventType.TOOL_EXECUTED, tool=call.name, call_id=call.id,
                output_length=len(outcome.content),
            )
        else:
            _logger.info("Tool %s failed: %s", call.name, outcome.error.message)
            await self._event_bus.publish(
                EventType.TOOL_ERROR, tool=call.name, call_id=call.id,
                kind=outcome.error.kind.value, error=outcome.error.message,
            )
        run.history.add_tool_result(call.id, outcome.content)
