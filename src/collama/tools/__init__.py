"""Tool system."""

from collama.tools.base import FunctionTool, Tool
from collama.tools.registry import ToolRegistry

__all__ = ["FunctionTool", "Tool", "ToolRegistry"]
