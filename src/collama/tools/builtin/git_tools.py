"""Read-only git inspection tools."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from collama.tools.base import Tool
from collama.tools.builtin.workspace import PathEscapeError, Workspace
from collama.types import ToolParameter, ToolResult

_MAX_COMMITS = 50
_MAX_DIFF_CHARS = 15000
_FIELD_SEP = "\x1f"


async def run_git(
    args: list[str], cwd: str, timeout: int = 30
) -> tuple[int, str, str]:
    """Run a git command asynchronously, returning (returncode, stdout, stderr)."""
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return 1, "", f"git {args[0]} timed out after {timeout}s"

    return (
        proc.returncode or 0,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


def _cap(diff: str) -> tuple[str, bool]:
    if len(diff) > _MAX_DIFF_CHARS:
        return diff[:_MAX_DIFF_CHARS], True
    return diff, False


class _GitTool(Tool):
    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace

    async def _run(self, args: list[str]) -> tuple[int, str, str]:
        return await run_git(args, cwd=str(self.workspace.root))

    @staticmethod
    def _checked_ref(ref: Any) -> str:
        # git would parse a leading dash as an option (e.g. --output=<file>)
        ref = str(ref)
        if ref.startswith("-"):
            raise ValueError(f"Invalid revision: {ref!r}")
        return ref

    def _checked_path(self, rel: str | None) -> str | None:
        if not rel:
            return None
        return self.workspace.relative(self.workspace.resolve(rel))


class GetCommitsTool(_GitTool):
    name = "getCommits"
    description = (
        "Get recent commits (hash, author, date, subject) of a branch, "
        "optionally limited to commits touching one file."
    )
    parameters = [
        ToolParameter(name="branch", type="string", description="Branch name (e.g. 'main'). Defaults to the current branch.", required=False),
        ToolParameter(name="limit", type="integer", description="Maximum number of commits (default 10, max 50).", required=False, default=10),
        ToolParameter(name="filePath", type="string", description="Only commits affecting this file.", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        limit = max(1, min(int(kwargs.get("limit") or 10), _MAX_COMMITS))
        try:
            file_path = self._checked_path(kwargs.get("filePath"))
            branch = self._checked_ref(kwargs["branch"]) if kwargs.get("branch") else None
        except ValueError as e:
            return ToolResult(success=False, output="", error=str(e))

        fmt = _FIELD_SEP.join(["%H", "%an", "%aI", "%s"])
        args = ["log", f"-{limit}", f"--pretty=format:{fmt}"]
        if branch:
            args.append(branch)
        if file_path:
            args += ["--", file_path]
        rc, out, err = await self._run(args)
        if rc != 0:
            return ToolResult(success=False, output="", error=f"Failed to get commits: {err.strip()}")

        commits = []
        for line in out.splitlines():
            parts = line.split(_FIELD_SEP)
            if len(parts) == 4:
                commits.append({"hash": parts[0], "author": parts[1], "date": parts[2], "message": parts[3]})
        return ToolResult(
            success=True,
            output=json.dumps({"branch": kwargs.get("branch") or "HEAD", "count": len(commits), "commits": commits}),
        )


class GetCommitDiffTool(_GitTool):
    name = "getCommitDiff"
    description = "Get the diff between two commits or branches, optionally for one file."
    parameters = [
        ToolParameter(name="from", type="string", description="Starting commit hash or branch name (e.g. 'main')."),
        ToolParameter(name="to", type="string", description="Ending commit hash or branch name (default 'HEAD').", required=False, default="HEAD"),
        ToolParameter(name="filePath", type="string", description="Only the diff of this file.", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            file_path = self._checked_path(kwargs.get("filePath"))
            base = self._checked_ref(kwargs["from"])
            head = self._checked_ref(kwargs.get("to") or "HEAD")
        except ValueError as e:
            return ToolResult(success=False, output="", error=str(e))
        args = ["diff", f"{base}..{head}"]
        if file_path:
            args += ["--", file_path]
        rc, out, err = await self._run(args)
        if rc != 0:
            return ToolResult(success=False, output="", error=f"Failed to get commit diff: {err.strip()}")
        diff, truncated = _cap(out)
        return ToolResult(
            success=True,
            output=json.dumps({"from": base, "to": head, "diff": diff or "(no changes)", "truncated": truncated}),
        )


class GetWorkingTreeDiffTool(_GitTool):
    name = "getWorkingTreeDiff"
    description = "Get unstaged or staged changes in the working directory."
    parameters = [
        ToolParameter(name="staged", type="boolean", description="Staged changes if true, unstaged otherwise (default false).", required=False, default=False),
        ToolParameter(name="filePath", type="string", description="Only the diff of this file.", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            file_path = self._checked_path(kwargs.get("filePath"))
        except PathEscapeError as e:
            return ToolResult(success=False, output="", error=str(e))
        staged = bool(kwargs.get("staged"))
        args = ["diff", "--cached"] if staged else ["diff"]
        if file_path:
            args += ["--", file_path]
        rc, out, err = await self._run(args)
        if rc != 0:
            return ToolResult(success=False, output="", error=f"Failed to get working tree diff: {err.strip()}")
        diff, truncated = _cap(out)
        return ToolResult(
            success=True,
            output=json.dumps({"staged": staged, "diff": diff or "(no changes)", "truncated": truncated}),
        )


class ListBranchesTool(_GitTool):
    name = "listBranches"
    description = "List all local (and optionally remote) git branches in the repository."
    parameters = [
        ToolParameter(name="includeRemote", type="boolean", description="Include remote branches (default false).", required=False, default=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        args = ["branch", "--format=%(refname:short)\t%(objectname:short)\t%(HEAD)"]
        if kwargs.get("includeRemote"):
            args.append("-a")
        rc, out, err = await self._run(args)
        if rc != 0:
            return ToolResult(success=False, output="", error=f"Failed to list branches: {err.strip()}")
        branches = []
        for line in out.splitlines():
            name, _, rest = line.partition("\t")
            commit, _, head = rest.partition("\t")
            branches.append({"name": name, "commit": commit, "current": head.strip() == "*"})
        return ToolResult(success=True, output=json.dumps({"branches": branches}))
