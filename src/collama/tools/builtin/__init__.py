"""Built-in workspace and git tools."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collama.tools.builtin.workspace import Confirm
    from collama.tools.registry import ToolRegistry


def register_builtins(
    registry: ToolRegistry,
    root: str | Path,
    confirm: Confirm | None = None,
) -> None:
    """Register all built-in tools, confined to *root*."""
    from collama.tools.builtin.git_tools import (
        GetCommitDiffTool,
        GetCommitsTool,
        GetWorkingTreeDiffTool,
        ListBranchesTool,
    )
    from collama.tools.builtin.workspace import (
        CreateTool,
        DeleteFileTool,
        EditFileTool,
        ListFilesTool,
        LsPathTool,
        ReadFileTool,
        SearchFilesTool,
        Workspace,
    )

    workspace = Workspace(root, confirm)
    for tool_cls in [
        ReadFileTool,
        ListFilesTool,
        SearchFilesTool,
        LsPathTool,
        GetCommitsTool,
        GetCommitDiffTool,
        GetWorkingTreeDiffTool,
        ListBranchesTool,
        EditFileTool,
        CreateTool,
        DeleteFileTool,
    ]:
        registry.register(tool_cls(workspace))
