"""Tests for the tool registry and dispatcher."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock, patch

from collama.tools.base import Tool
from collama.tools.registry import ToolRegistry, _smart_truncate
from collama.types import (
    ToolCallRequest,
    ToolErrorKind,
    ToolParameter,
    ToolResult,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class EchoTool(Tool):
    name = "echo"
    description = "Echoes the input message."
    parameters = [
        ToolParameter(name="message", type="string", description="Message to echo"),
        ToolParameter(name="times", type="integer", description="Repeat count", required=False, default=1),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        msg = kwargs["message"] * kwargs.get("times", 1)
        return ToolResult(success=True, output=json.dumps({"echo": msg}))


class FailTool(Tool):
    name = "fail"
    description = "Always raises."
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        raise RuntimeError("intentional failure")


class RefuseTool(Tool):
    name = "refuse"
    description = "Reports an error without raising."
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=False, output="", error="File not found: x")


def _registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(FailTool())
    reg.register(RefuseTool())
    return reg


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestDefinitions:
    def test_schema_shape(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        [schema] = reg.get_definitions()
        assert schema["type"] == "function"
        fn = schema["function"]
        assert fn["name"] == "echo"
        assert fn["description"] == "Echoes the input message."
        assert fn["parameters"]["required"] == ["message"]
        assert fn["parameters"]["properties"]["times"]["default"] == 1

    def test_register_function(self):
        async def executor(args: dict) -> str:
            return json.dumps(args)

        reg = ToolRegistry()
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        reg.register_function("raw", "Raw tool", executor, schema)
        assert reg.get_definitions()[0]["function"]["parameters"] == schema
        assert reg.get("raw").required_parameters() == ["q"]

    def test_tool_names(self):
        assert _registry().tool_names() == ["echo", "fail", "refuse"]


class TestExecute:
    async def test_success(self):
        outcome = await _registry().execute("echo", {"message": "hi", "times": 2})
        assert outcome.ok
        assert json.loads(outcome.content) == {"echo": "hihi"}

    async def test_unknown_tool_lists_available(self):
        outcome = await _registry().execute("nope", {})
        assert not outcome.ok
        assert outcome.error.kind is ToolErrorKind.UNKNOWN_TOOL
        payload = json.loads(outcome.content)
        assert "nope" in payload["error"]
        assert payload["available"] == ["echo", "fail", "refuse"]

    async def test_exception_becomes_error_payload(self):
        outcome = await _registry().execute("fail", {})
        assert outcome.error.kind is ToolErrorKind.EXECUTION_FAILED
        assert "intentional failure" in json.loads(outcome.content)["error"]

    async def test_reported_failure(self):
        outcome = await _registry().execute("refuse", {})
        assert outcome.error.kind is ToolErrorKind.TOOL_REPORTED
        assert json.loads(outcome.content) == {"error": "File not found: x"}

    async def test_missing_required_argument(self):
        outcome = await _registry().execute("echo", {})
        assert outcome.error.kind is ToolErrorKind.INVALID_ARGUMENTS
        assert "message" in json.loads(outcome.content)["error"]

    async def test_non_object_arguments(self):
        outcome = await _registry().execute("echo", ["hi"])
        assert outcome.error.kind is ToolErrorKind.INVALID_ARGUMENTS

    async def test_output_truncation(self):
        reg = ToolRegistry(max_output=50)
        reg.register(EchoTool())
        outcome = await reg.execute("echo", {"message": "x" * 200})
        assert outcome.ok
        assert "chars truncated" in outcome.content


class TestDispatch:
    async def test_parses_arguments_json(self):
        call = ToolCallRequest(id="c1", name="echo", arguments_json='{"message": "yo"}')
        outcome = await _registry().dispatch(call)
        assert json.loads(outcome.content) == {"echo": "yo"}

    async def test_empty_arguments_json(self):
        call = ToolCallRequest(id="c1", name="fail", arguments_json="")
        outcome = await _registry().dispatch(call)
        assert outcome.error.kind is ToolErrorKind.EXECUTION_FAILED

    async def test_malformed_json_is_tool_error(self):
        call = ToolCallRequest(id="c1", name="echo", arguments_json='{"message": ')
        outcome = await _registry().dispatch(call)
        assert outcome.error.kind is ToolErrorKind.INVALID_ARGUMENTS
        assert "not JSON" in json.loads(outcome.content)["error"]


class TestDiscover:
    def test_loads_tool_classes_from_entry_points(self):
        ep = MagicMock()
        ep.name = "echo"
        ep.load.return_value = EchoTool
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("missing dependency")

        reg = ToolRegistry()
        with patch("collama.tools.registry.entry_points", return_value=[ep, broken]) as eps:
            reg.discover()

        eps.assert_called_once_with(group="collama.tools")
        assert reg.tool_names() == ["echo"]


class TestSmartTruncate:
    def test_short_text_unchanged(self):
        assert _smart_truncate("hello", 100) == "hello"

    def test_keeps_head_and_tail(self):
        text = "A" * 100 + "B" * 100
        result = _smart_truncate(text, 40)
        assert result.startswith("A" * 10)
        assert result.endswith("B" * 30)
        assert "[160 chars truncated]" in result
