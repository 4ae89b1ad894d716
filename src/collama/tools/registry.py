"""Tool registry and dispatcher with plugin discovery.

Dispatch never raises: unknown tools, malformed arguments and executor
exceptions all come back as a :class:`~collama.types.ToolOutcome` whose
``content`` is a JSON ``{"error": ...}`` payload, so one failing tool cannot
abort a conversation.
"""

from __future__ import annotations

import json
import logging
from importlib.metadata import entry_points
from typing import Any

from collama.tools.base import FunctionTool, Tool, ToolExecutor
from collama.types import ToolCallRequest, ToolError, ToolErrorKind, ToolOutcome

_logger = logging.getLogger(__name__)

_PLUGIN_GROUP = "collama.tools"


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep the head and tail of oversized output with a marker in between."""
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


def _error(kind: ToolErrorKind, message: str, **extra: Any) -> ToolOutcome:
    return ToolOutcome(
        content=json.dumps({"error": message, **extra}),
        error=ToolError(kind=kind, message=message),
    )


class ToolRegistry:
    """Maps tool names to their schema and executor."""

    def __init__(self, max_output: int = 0) -> None:
        self._tools: dict[str, Tool] = {}
        self._max_output = max_output  # 0 = unlimited

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            _logger.warning("Replacing already registered tool: %s", tool.name)
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        description: str,
        executor: ToolExecutor,
        schema: dict[str, Any] | None = None,
    ) -> None:
        self.register(FunctionTool(name, description, executor, schema))

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        """Function-calling schemas for all registered tools."""
        return [t.to_schema() for t in self._tools.values()]

    async def execute(self, name: str, arguments: Any) -> ToolOutcome:
        """Validate *arguments* and run tool *name*."""
        tool = self._tools.get(name)
        if tool is None:
            return _error(
                ToolErrorKind.UNKNOWN_TOOL,
                f"Unknown tool: {name}",
                available=self.tool_names(),
            )

        if not isinstance(arguments, dict):
            return _error(
                ToolErrorKind.INVALID_ARGUMENTS,
                f"Arguments for {name} must be a JSON object, got {type(arguments).__name__}",
            )
        missing = [p for p in tool.required_parameters() if p not in arguments]
        if missing:
            return _error(
                ToolErrorKind.INVALID_ARGUMENTS,
                f"Missing required arguments for {name}: {', '.join(missing)}",
            )

        try:
            result = await tool.execute(**arguments)
        except Exception as e:
            _logger.exception("Tool %s failed", name)
            return _error(ToolErrorKind.EXECUTION_FAILED, f"{type(e).__name__}: {e}")

        if not result.success:
            _logger.info("Tool %s reported an error: %s", name, result.error)
            return ToolOutcome(
                content=result.to_message(),
                error=ToolError(kind=ToolErrorKind.TOOL_REPORTED, message=result.error),
            )

        content = result.output
        if self._max_output > 0:
            content = _smart_truncate(content, self._max_output)
        return ToolOutcome(content=content)

    async def dispatch(self, call: ToolCallRequest) -> ToolOutcome:
        """Parse ``call.arguments_json`` and execute the named tool."""
        try:
            arguments = json.loads(call.arguments_json) if call.arguments_json.strip() else {}
        except json.JSONDecodeError as e:
            _logger.info("Malformed arguments for %s: %s", call.name, e)
            return _error(
                ToolErrorKind.INVALID_ARGUMENTS,
                f"Invalid tool arguments (not JSON): {e}",
            )
        return await self.execute(call.name, arguments)

    def discover(self) -> None:
        """Load tools from entry points in group ``collama.tools``.

        Each entry point is a Tool subclass, a Tool instance, or a callable
        returning a Tool.
        """
        for ep in entry_points(group=_PLUGIN_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(obj)
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
