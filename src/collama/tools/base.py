"""Async Tool abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from collama.types import ToolParameter, ToolResult


class Tool(ABC):
    """Base class for all tools.

    Subclasses set ``name``, ``description``, ``parameters`` as class
    attributes and implement the async ``execute()`` method.  Successful
    output is a JSON-serialized string.
    """

    name: str
    description: str
    parameters: list[ToolParameter]

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool asynchronously."""

    def parameters_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            if p.items is not None:
                prop["items"] = p.items
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return {"type": "object", "properties": properties, "required": required}

    def required_parameters(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def to_schema(self) -> dict[str, Any]:
        """Function-calling schema understood by both backends."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema(),
            },
        }


ToolExecutor = Callable[[dict[str, Any]], Awaitable[str]]


class FunctionTool(Tool):
    """Adapts a plain ``async (args) -> str`` executor and a raw JSON schema."""

    def __init__(
        self,
        name: str,
        description: str,
        executor: ToolExecutor,
        schema: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = []
        self._executor = executor
        self._schema = schema or {"type": "object", "properties": {}}

    def parameters_schema(self) -> dict[str, Any]:
        return self._schema

    def required_parameters(self) -> list[str]:
        return list(self._schema.get("required", []))

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output=await self._executor(kwargs))
