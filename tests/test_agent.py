"""End-to-end tests for the agent loop with a scripted model and real registry."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from collama.core.agent import (
    Agent,
    AgentState,
    CancellationToken,
    thinking_block,
    tool_announcement,
)
from collama.core.history import AssistantTurn, ConversationHistory, ToolTurn
from collama.events.bus import EventBus
from collama.tools.base import Tool
from collama.tools.registry import ToolRegistry
from collama.types import (
    ApiEndpoint,
    ChatResult,
    ChatSettings,
    EventType,
    Options,
    ToolCallRequest,
    ToolParameter,
    ToolResult,
)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class ReadFileTool(Tool):
    name = "readFile"
    description = "Read a file"
    parameters = [ToolParameter(name="path", type="string", description="File path")]

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        self.calls.append(kwargs["path"])
        return ToolResult(success=True, output=json.dumps({"content": f"// {kwargs['path']}"}))


class ScriptedClient:
    """Replays one (chunks, result) pair per chat call."""

    def __init__(self, script: list[tuple[list[str], ChatResult]]) -> None:
        self._script = list(script)
        self.requests: list[ChatSettings] = []

    async def chat(self, settings: ChatSettings, on_chunk=None) -> ChatResult:
        # snapshot: the agent keeps appending to its own history
        self.requests.append(settings)
        chunks, result = self._script.pop(0)
        for chunk in chunks:
            on_chunk(chunk)
        return result


def _tool_result(*calls: ToolCallRequest, content: str = "") -> ChatResult:
    return ChatResult(content=content, tool_calls=list(calls))


def _read(call_id: str, path: str = "a.ts") -> ToolCallRequest:
    return ToolCallRequest(id=call_id, name="readFile", arguments_json=json.dumps({"path": path}))


def _agent(client, registry: ToolRegistry, max_rounds: int = 10, bus: EventBus | None = None) -> Agent:
    return Agent(
        client,
        registry,
        endpoint=ApiEndpoint(url="http://llm.test"),
        model="qwen3:8b",
        options=Options(num_ctx=16384, num_predict=16384, temperature=0.1, top_p=0.9, top_k=20),
        max_rounds=max_rounds,
        event_bus=bus,
    )


def _start_history() -> ConversationHistory:
    history = ConversationHistory()
    history.add_system("You are a coding assistant.")
    history.add_user("What is in a.ts?")
    return history


@pytest.fixture
def registry_and_tool() -> tuple[ToolRegistry, ReadFileTool]:
    tool = ReadFileTool()
    registry = ToolRegistry()
    registry.register(tool)
    return registry, tool


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestTwoRoundRun:
    async def test_tool_round_then_answer(self, registry_and_tool):
        registry, tool = registry_and_tool
        client = ScriptedClient([
            ([], _tool_result(_read("call_0"))),
            (["a.ts ", "exports a constant."], ChatResult(content="a.ts exports a constant.")),
        ])
        chunks: list[str] = []
        history = _start_history()

        run = await _agent(client, registry).run(history, chunks.append)

        assert run.rounds == 2
        assert run.content == "a.ts exports a constant."
        assert tool.calls == ["a.ts"]

        new_turns = run.history.turns[len(history):]
        assert len(new_turns) == 3
        assert isinstance(new_turns[0], AssistantTurn)
        assert [c.id for c in new_turns[0].tool_calls] == ["call_0"]
        assert isinstance(new_turns[1], ToolTurn)
        assert new_turns[1].tool_call_id == "call_0"
        assert json.loads(new_turns[1].content) == {"content": "// a.ts"}
        assert isinstance(new_turns[2], AssistantTurn)
        assert new_turns[2].content == "a.ts exports a constant."
        assert new_turns[2].tool_calls == ()

        output = "".join(chunks)
        announcement = '```Tool: readFile\n{\n  "path": "a.ts"\n}\n```'
        assert announcement in output
        assert output.index(announcement) < output.index("a.ts exports")

    async def test_caller_history_is_not_mutated(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([
            ([], _tool_result(_read("c1"))),
            ([], ChatResult(content="done")),
        ])
        history = _start_history()
        await _agent(client, registry).run(history, lambda c: None)
        assert len(history) == 2

    async def test_second_request_carries_tool_turns(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([
            ([], _tool_result(_read("c1"))),
            ([], ChatResult(content="done")),
        ])
        await _agent(client, registry).run(_start_history(), lambda c: None)

        second = client.requests[1].messages
        assert [m["role"] for m in second] == ["system", "user", "assistant", "tool"]
        assert second[2]["tool_calls"][0]["id"] == "c1"
        assert second[3]["tool_call_id"] == "c1"
        assert client.requests[0].tools == registry.get_definitions()


class TestExecution:
    async def test_calls_run_in_order(self, registry_and_tool):
        registry, tool = registry_and_tool
        client = ScriptedClient([
            ([], _tool_result(_read("c1", "one.ts"), _read("c2", "two.ts"), _read("c3", "three.ts"))),
            ([], ChatResult(content="ok")),
        ])
        run = await _agent(client, registry).run(_start_history(), lambda c: None)

        assert tool.calls == ["one.ts", "two.ts", "three.ts"]
        tool_turns = [t for t in run.history if isinstance(t, ToolTurn)]
        assert [t.tool_call_id for t in tool_turns] == ["c1", "c2", "c3"]

    async def test_tool_failures_are_fed_back(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([
            ([], _tool_result(
                ToolCallRequest(id="c1", name="deleteEverything", arguments_json="{}"),
                ToolCallRequest(id="c2", name="readFile", arguments_json='{"path": '),
            )),
            ([], ChatResult(content="sorry")),
        ])
        bus = EventBus()
        errors = []
        bus.subscribe(EventType.TOOL_ERROR, errors.append)

        run = await _agent(client, registry, bus=bus).run(_start_history(), lambda c: None)

        tool_turns = [t for t in run.history if isinstance(t, ToolTurn)]
        assert "available" in json.loads(tool_turns[0].content)
        assert "not JSON" in json.loads(tool_turns[1].content)["error"]
        assert run.content == "sorry"
        assert [e.data["call_id"] for e in errors] == ["c1", "c2"]

    async def test_assistant_content_with_calls_is_kept(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([
            (["Let me check."], _tool_result(_read("c1"), content="Let me check.")),
            ([], ChatResult(content="done")),
        ])
        chunks: list[str] = []
        run = await _agent(client, registry).run(_start_history(), chunks.append)
        assert run.history[2].content == "Let me check."
        assert "".join(chunks).count("Let me check.") == 1

    async def test_thinking_is_streamed_as_fenced_block(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([
            (["42"], ChatResult(content="42", thinking="use ``` carefully")),
        ])
        chunks: list[str] = []
        await _agent(client, registry).run(_start_history(), chunks.append)
        assert chunks[-1] == "\n````Think: Reasoning\nuse ``` carefully\n````\n\n"


class TestTermination:
    async def test_round_limit_stops_the_loop(self, registry_and_tool):
        registry, tool = registry_and_tool
        client = ScriptedClient([([], _tool_result(_read(f"c{i}"))) for i in range(10)])
        bus = EventBus()
        limits = []
        bus.subscribe(EventType.AGENT_ROUND_LIMIT, limits.append)

        agent = _agent(client, registry, max_rounds=3, bus=bus)
        run = await agent.run(_start_history(), lambda c: None)

        assert run.rounds == 3
        assert len(client.requests) == 3
        assert len(tool.calls) == 3
        assert run.round_limit_reached
        assert len(limits) == 1
        assert run.state is AgentState.DONE
        # last round's tools were answered, the history stays valid
        assert run.history.pending_tool_calls() == []

    async def test_cancel_before_first_request(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = ScriptedClient([])
        token = CancellationToken()
        token.cancel()

        run = await _agent(client, registry).run(_start_history(), lambda c: None, token)

        assert run.cancelled
        assert run.rounds == 0
        assert client.requests == []

    async def test_cancel_between_rounds(self, registry_and_tool):
        registry, _ = registry_and_tool
        token = CancellationToken()

        class CancellingTool(ReadFileTool):
            async def execute(self, **kwargs: Any) -> ToolResult:
                token.cancel()
                return await super().execute(**kwargs)

        registry.register(CancellingTool())
        client = ScriptedClient([([], _tool_result(_read("c1")))])
        bus = EventBus()
        cancelled = []
        bus.subscribe(EventType.AGENT_CANCELLED, cancelled.append)

        run = await _agent(client, registry, bus=bus).run(_start_history(), lambda c: None, token)

        assert run.cancelled
        assert run.rounds == 1
        assert len(cancelled) == 1
        assert run.history.pending_tool_calls() == []

    async def test_transport_error_propagates(self, registry_and_tool):
        registry, _ = registry_and_tool
        client = AsyncMock()
        client.chat.side_effect = httpx.ConnectError("connection refused")
        bus = EventBus()
        errors = []
        bus.subscribe(EventType.LLM_ERROR, errors.append)

        with pytest.raises(httpx.ConnectError):
            await _agent(client, registry, bus=bus).run(_start_history(), lambda c: None)
        assert len(errors) == 1

    def test_max_rounds_must_be_positive(self, registry_and_tool):
        registry, _ = registry_and_tool
        with pytest.raises(ValueError):
            _agent(ScriptedClient([]), registry, max_rounds=0)


class TestConcurrentRuns:
    async def test_overlapping_runs_keep_their_own_state(self):
        gate = asyncio.Event()

        class GatedTool(ReadFileTool):
            async def execute(self, **kwargs: Any) -> ToolResult:
                await gate.wait()
                return await super().execute(**kwargs)

        registry = ToolRegistry()
        registry.register(GatedTool())

        class GoalClient:
            async def chat(self, settings: ChatSettings, on_chunk=None) -> ChatResult:
                goal = settings.messages[1]["content"]
                answered = any(m["role"] == "tool" for m in settings.messages)
                if goal == "slow" and not answered:
                    return _tool_result(_read("s1"))
                gate.set()
                return ChatResult(content=f"{goal} done")

        def history(goal: str) -> ConversationHistory:
            h = ConversationHistory()
            h.add_system("You are a coding assistant.")
            h.add_user(goal)
            return h

        agent = _agent(GoalClient(), registry)
        slow, fast = await asyncio.gather(
            agent.run(history("slow"), lambda c: None),
            agent.run(history("fast"), lambda c: None),
        )

        assert (slow.content, slow.rounds) == ("slow done", 2)
        assert (fast.content, fast.rounds) == ("fast done", 1)
        assert slow.state is fast.state is AgentState.DONE
        assert slow.history.pending_tool_calls() == []


class TestFormatting:
    def test_announcement_without_arguments(self):
        call = ToolCallRequest(id="c1", name="listBranches", arguments_json="{}")
        assert tool_announcement(call) == "\n\n"

    def test_announcement_with_malformed_arguments(self):
        call = ToolCallRequest(id="c1", name="readFile", arguments_json='{"path":')
        assert tool_announcement(call) == '\n\n```Tool: readFile\n{"path":\n```\n\n'

    def test_thinking_fence_minimum(self):
        assert thinking_block("plain") == "\n```Think: Reasoning\nplain\n```\n\n"
