"""Command line interface for collama."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from collama import __version__
from collama.config import CollamaConfig, ConfigError, load_config
from collama.core.agent import Agent
from collama.core.history import ConversationHistory
from collama.core.prompts import AGENT_SYSTEM_PROMPT, OpenFile
from collama.core.requests import request_chat, request_commit_message, request_completion
from collama.events.bus import EventBus
from collama.llm.detection import BackendCache, get_model_thinking
from collama.llm.factory import BackendNotDetectedError, LLMClientFactory
from collama.llm.options import build_agent_options, empty_stop
from collama.tools.builtin import register_builtins
from collama.tools.builtin.git_tools import run_git
from collama.tools.registry import ToolRegistry
from collama.types import AgentEvent, BackendType, EventType, RequestCategory

console = Console()


class _State:
    def __init__(self, config: CollamaConfig) -> None:
        self.config = config
        self.cache = BackendCache(default_context_length=config.tokens_receive_default)
        self.event_bus = EventBus()
        self.event_bus.subscribe(EventType.USER_WARNING, _print_notice)
        self.event_bus.subscribe(EventType.USER_ERROR, _print_notice)


def _print_notice(event: AgentEvent) -> None:
    style = "red" if event.type == EventType.USER_ERROR else "yellow"
    console.print(f"\n[{style}]{event.data.get('message', '')}[/{style}]")


def _stream(chunk: str) -> None:
    console.print(chunk, end="", markup=False, highlight=False, soft_wrap=True)


def _build_registry(root: str, assume_yes: bool) -> ToolRegistry:
    async def confirm(action: str, detail: str) -> bool:
        if assume_yes:
            return True
        return await asyncio.to_thread(click.confirm, f"\n{action} {detail}", default=False)

    registry = ToolRegistry(max_output=20000)
    register_builtins(registry, root, confirm)
    registry.discover()
    return registry


def _run(coro):
    try:
        return asyncio.run(coro)
    except BackendNotDetectedError as e:
        console.print(f"[red]{e}. Is the server running?[/red]")
        sys.exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Request failed: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to collama.yaml (auto-detected from CWD or ~/.config/collama/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="collama")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Code completion, chat and a tool-calling agent on Ollama or OpenAI-compatible servers."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    ctx.obj = _State(config)


@main.command()
@click.pass_obj
def detect(state: _State) -> None:
    """Detect backend and context length of both endpoints."""
    async def _detect() -> None:
        table = Table(title="Endpoints", border_style="dim")
        table.add_column("Category")
        table.add_column("URL")
        table.add_column("Model")
        table.add_column("Backend", no_wrap=True)
        table.add_column("Context", justify="right")
        for category in RequestCategory:
            spec = state.config.endpoint(category)
            detected = await state.cache.detect(category, spec)
            backend = detected.backend.value if detected.backend else "[red]not found[/red]"
            table.add_row(
                category.value, spec.url, spec.model, backend, str(detected.context_length),
            )
        console.print(table)

    _run(_detect())


@main.command()
@click.argument("prompt")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--think/--no-think", default=None, help="Request reasoning output")
@click.pass_obj
def chat(state: _State, prompt: str, system: str | None, think: bool | None) -> None:
    """Ask one question and stream the answer."""
    async def _chat() -> None:
        config = state.config
        await state.cache.detect(RequestCategory.INSTRUCTION, config.instruction)
        history = ConversationHistory()
        if system:
            history.add_system(system)
        history.add_user(prompt)
        result = await request_chat(
            config, state.cache, history, _stream, think=think, event_bus=state.event_bus,
        )
        if result.thinking:
            console.print(Panel(result.thinking, title="Reasoning", border_style="dim"))
        console.print()

    _run(_chat())


@main.command()
@click.argument("goal")
@click.option("--root", "-r", default=None, help="Workspace root (default: config workspace_root)")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Apply edits without confirmation")
@click.option("--max-rounds", type=int, default=None, help="Override agent_max_rounds")
@click.pass_obj
def agent(
    state: _State, goal: str, root: str | None, assume_yes: bool, max_rounds: int | None,
) -> None:
    """Run the tool-calling agent on GOAL."""
    async def _agent() -> None:
        config = state.config
        spec = config.instruction
        detected = await state.cache.detect(RequestCategory.INSTRUCTION, spec)
        think = False
        if detected.backend is BackendType.OLLAMA:
            think = await get_model_thinking(spec)

        registry = _build_registry(root or config.workspace_root, assume_yes)
        runner = Agent(
            LLMClientFactory(RequestCategory.INSTRUCTION, state.cache, event_bus=state.event_bus),
            registry,
            endpoint=spec.to_endpoint(),
            model=spec.model,
            options=build_agent_options(detected.context_length),
            stop=empty_stop(),
            think=think,
            max_rounds=max_rounds or config.agent_max_rounds,
            event_bus=state.event_bus,
        )
        history = ConversationHistory()
        history.add_system(AGENT_SYSTEM_PROMPT)
        history.add_user(goal)

        run = await runner.run(history, _stream)
        console.print()
        if run.round_limit_reached:
            console.print(f"[yellow]Stopped after {run.rounds} rounds (limit reached).[/yellow]")
        else:
            console.print(f"[dim]Done in {run.rounds} rounds.[/dim]")

    _run(_agent())


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--offset", "-o", type=int, default=None,
              help="Cursor offset in characters (default: end of file)")
@click.pass_obj
def complete(state: _State, path: Path, offset: int | None) -> None:
    """Fill in code at a cursor position in PATH."""
    text = path.read_text()
    cursor = len(text) if offset is None else max(0, min(offset, len(text)))

    async def _complete() -> str:
        await state.cache.detect(RequestCategory.COMPLETION, state.config.completion)
        return await request_completion(
            state.config,
            state.cache,
            prefix=text[:cursor],
            suffix=text[cursor:],
            open_files=[OpenFile(path=str(path), content=text)],
            event_bus=state.event_bus,
        )

    snippet = _run(_complete())
    if snippet:
        console.print(snippet, markup=False, highlight=False)
    elif not state.event_bus.notices:
        console.print("[dim]No completion.[/dim]")


@main.command("commit-message")
@click.option("--root", "-r", default=None, help="Repository root (default: config workspace_root)")
@click.pass_obj
def commit_message(state: _State, root: str | None) -> None:
    """Suggest a commit message for the staged changes."""
    async def _commit() -> str:
        cwd = str(Path(root or state.config.workspace_root).resolve())
        rc, diff, err = await run_git(["diff", "--cached"], cwd=cwd)
        if rc != 0:
            raise click.ClickException(f"git diff failed: {err.strip()}")
        if not diff.strip():
            raise click.ClickException("No staged changes.")
        await state.cache.detect(RequestCategory.INSTRUCTION, state.config.instruction)
        return await request_commit_message(
            state.config, state.cache, diff, event_bus=state.event_bus,
        )

    message = _run(_commit())
    if message:
        console.print(message, markup=False, highlight=False)


@main.command()
@click.option("--root", "-r", default=".", help="Workspace root")
def tools(root: str) -> None:
    """List the tools offered to the agent."""
    registry = _build_registry(root, assume_yes=True)
    table = Table(title="Tools", border_style="dim")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Required")
    table.add_column("Description")
    for name in registry.tool_names():
        tool = registry.get(name)
        table.add_row(name, ", ".join(tool.required_parameters()), tool.description[:80])
    console.print(table)


if __name__ == "__main__":
    main()
