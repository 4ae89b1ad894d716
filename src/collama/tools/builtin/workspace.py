"""Workspace file tools: explore, read, edit, create and delete.

Every path is relative to the workspace root and may not escape it.  Writes
go through an optional confirmation callback; the agent loop simply awaits
it, however long the user takes.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import os
import re
from pathlib import Path
from typing import Any, Awaitable, Callable

from collama.tools.base import Tool
from collama.types import ToolParameter, ToolResult

Confirm = Callable[[str, str], Awaitable[bool]]

_SKIP_DIRS = {
    ".git", ".venv", "venv", "node_modules", "__pycache__",
    ".mypy_cache", ".ruff_cache", ".pytest_cache", "dist", "build",
    ".eggs", ".tox", ".next", "target", ".cache", "out",
}
_MAX_READ_BYTES = 1_000_000
_MAX_MATCHES = 200
_MAX_LISTED = 1000


class PathEscapeError(ValueError):
    pass


class Workspace:
    """Root directory the tools are confined to."""

    def __init__(self, root: str | Path, confirm: Confirm | None = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self._confirm = confirm

    def resolve(self, relative: str) -> Path:
        """Absolute path for *relative*; raises if it leaves the root."""
        path = (self.root / relative).resolve()
        if path != self.root and self.root not in path.parents:
            raise PathEscapeError("Path must not escape the workspace root")
        return path

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def iter_files(self):
        """Files under the root, skipping vendor and cache directories."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if path.is_file():
                    yield path

    async def confirm(self, action: str, detail: str) -> bool:
        if self._confirm is None:
            return True
        return await self._confirm(action, detail)


def _ok(**payload: Any) -> ToolResult:
    return ToolResult(success=True, output=json.dumps(payload))


def _fail(message: str) -> ToolResult:
    return ToolResult(success=False, output="", error=message)


class _WorkspaceTool(Tool):
    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    def _resolve(self, relative: str) -> Path | ToolResult:
        try:
            return self.workspace.resolve(relative)
        except PathEscapeError as e:
            return _fail(str(e))


class ReadFileTool(_WorkspaceTool):
    name = "readFile"
    description = (
        "Read a text file from the workspace. Optionally restrict to a 1-based, "
        "inclusive line range."
    )
    parameters = [
        ToolParameter(name="filePath", type="string", description="Path relative to the workspace root."),
        ToolParameter(name="startLine", type="integer", description="First line to return (1-based).", required=False),
        ToolParameter(name="endLine", type="integer", description="Last line to return (inclusive).", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = self._resolve(kwargs["filePath"])
        if isinstance(path, ToolResult):
            return path
        start = kwargs.get("startLine")
        end = kwargs.get("endLine")

        def _read() -> ToolResult:
            if not path.is_file():
                return _fail(f"File not found: {kwargs['filePath']}")
            if path.stat().st_size > _MAX_READ_BYTES:
                return _fail(f"File too large (max {_MAX_READ_BYTES} bytes)")
            lines = path.read_text(errors="replace").splitlines()
            first = max(1, start or 1)
            last = min(len(lines), end or len(lines))
            return _ok(
                filePath=kwargs["filePath"],
                startLine=first,
                endLine=last,
                totalLines=len(lines),
                content="\n".join(lines[first - 1:last]),
            )

        return await asyncio.to_thread(_read)


class ListFilesTool(_WorkspaceTool):
    name = "listFiles"
    description = "List workspace files recursively, optionally filtered by a glob pattern."
    parameters = [
        ToolParameter(name="pattern", type="string", description="Glob such as '**/*.py'.", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        pattern = kwargs.get("pattern") or "*"

        def _list() -> ToolResult:
            files: list[str] = []
            for path in self.workspace.iter_files():
                rel = self.workspace.relative(path)
                if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(path.name, pattern):
                    files.append(rel)
                    if len(files) >= _MAX_LISTED:
                        break
            return _ok(files=files, truncated=len(files) >= _MAX_LISTED)

        return await asyncio.to_thread(_list)


class LsPathTool(_WorkspaceTool):
    name = "lsPath"
    description = "List the direct entries of one workspace directory."
    parameters = [
        ToolParameter(name="dirPath", type="string", description="Directory relative to the root.", required=False, default="."),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = self._resolve(kwargs.get("dirPath") or ".")
        if isinstance(path, ToolResult):
            return path

        def _ls() -> ToolResult:
            if not path.is_dir():
                return _fail(f"Not a directory: {kwargs.get('dirPath', '.')}")
            entries = [
                {"name": item.name, "type": "directory" if item.is_dir() else "file"}
                for item in sorted(path.iterdir())
            ]
            return _ok(dirPath=self.workspace.relative(path) or ".", entries=entries)

        return await asyncio.to_thread(_ls)


class SearchFilesTool(_WorkspaceTool):
    name = "searchFiles"
    description = "Search workspace files for text or a regular expression; returns matching lines."
    parameters = [
        ToolParameter(name="query", type="string", description="Text or regex to search for."),
        ToolParameter(name="isRegex", type="boolean", description="Treat query as a regex.", required=False, default=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = kwargs["query"]
        if not query:
            return _fail("Empty query")
        try:
            regex = re.compile(query if kwargs.get("isRegex") else re.escape(query), re.IGNORECASE)
        except re.error as e:
            return _fail(f"Invalid regex: {e}")

        def _search() -> ToolResult:
            matches: list[dict[str, Any]] = []
            for path in self.workspace.iter_files():
                if path.stat().st_size > _MAX_READ_BYTES:
                    continue
                try:
                    text = path.read_text()
                except (UnicodeDecodeError, PermissionError):
                    continue
                for lineno, line in enumerate(text.splitlines(), 1):
                    if regex.search(line):
                        matches.append({
                            "filePath": self.workspace.relative(path),
                            "line": lineno,
                            "text": line.strip(),
                        })
                        if len(matches) >= _MAX_MATCHES:
                            return _ok(query=query, matches=matches, truncated=True)
            return _ok(query=query, matches=matches, truncated=False)

        return await asyncio.to_thread(_search)


class EditFileTool(_WorkspaceTool):
    name = "editFile"
    description = (
        "Edit a workspace file by applying exact text replacements in order. "
        "Each oldText must occur exactly once."
    )
    parameters = [
        ToolParameter(name="filePath", type="string", description="Path to the file to edit (relative to workspace root)."),
        ToolParameter(
            name="edits",
            type="array",
            description="One or more replacements to apply in order.",
            items={
                "type": "object",
                "properties": {
                    "oldText": {"type": "string", "description": "Exact text to replace; must be unique in the file."},
                    "newText": {"type": "string", "description": "The replacement string. Can be empty to delete the matched text."},
                },
                "required": ["oldText", "newText"],
            },
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = self._resolve(kwargs["filePath"])
        if isinstance(path, ToolResult):
            return path
        edits = kwargs["edits"]
        if not edits:
            return _fail("No edits provided")
        if not path.is_file():
            return _fail(f"File not found: {kwargs['filePath']}")

        original = await asyncio.to_thread(path.read_text)
        text = original
        for i, edit in enumerate(edits):
            old, new = edit.get("oldText", ""), edit.get("newText", "")
            count = text.count(old) if old else 0
            if count == 0:
                return _fail(f"Edit {i}: oldText not found in {kwargs['filePath']}")
            if count > 1:
                return _fail(f"Edit {i}: oldText found {count} times, add context to make it unique")
            text = text.replace(old, new, 1)

        if text == original:
            return _ok(success=False, message="No changes to apply.", filePath=kwargs["filePath"])
        if not await self.workspace.confirm("Apply these changes?", kwargs["filePath"]):
            return _ok(success=False, message="Changes discarded.", filePath=kwargs["filePath"])
        await asyncio.to_thread(path.write_text, text)
        return _ok(success=True, message="Changes applied.", filePath=kwargs["filePath"], editsApplied=len(edits))


class CreateTool(_WorkspaceTool):
    name = "create"
    description = "Create a new file with content, or a folder when content is omitted."
    parameters = [
        ToolParameter(name="filePath", type="string", description="Path to the new file or folder (relative to workspace root)."),
        ToolParameter(name="content", type="string", description="File content. Omit to create a folder instead.", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        rel = kwargs["filePath"]
        path = self._resolve(rel)
        if isinstance(path, ToolResult):
            return path
        content = kwargs.get("content")
        is_folder = content is None
        if path.exists():
            kind = "Folder" if path.is_dir() else "File"
            return _fail(f"{kind} already exists: {rel}")

        what = "folder" if is_folder else "file"
        if not await self.workspace.confirm(f"Create {what}?", rel):
            return _ok(success=False, message=f"{what.capitalize()} creation cancelled.", filePath=rel)

        def _create() -> None:
            if is_folder:
                path.mkdir(parents=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        await asyncio.to_thread(_create)
        return _ok(success=True, message=f"{what.capitalize()} created.", filePath=rel)


class DeleteFileTool(_WorkspaceTool):
    name = "deleteFile"
    description = "Delete a file from the workspace. Asks for user confirmation before deleting."
    parameters = [
        ToolParameter(name="filePath", type="string", description="Path to the file to delete (relative to workspace root)."),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        rel = kwargs["filePath"]
        path = self._resolve(rel)
        if isinstance(path, ToolResult):
            return path
        if path.is_dir():
            return _fail(f"Path is a directory, not a file: {rel}")
        if not path.is_file():
            return _fail(f"File not found: {rel}")

        if not await self.workspace.confirm("Delete file?", rel):
            return _ok(success=False, message="Deletion cancelled.", filePath=rel)
        await asyncio.to_thread(path.unlink)
        return _ok(success=True, message="File deleted.", filePath=rel)
