"""Prompt templates and fill-in-the-middle model configurations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence


@dataclass(frozen=True)
class OpenFile:
    """An editor file passed along as completion context."""

    path: str
    content: str


FimTemplate = Callable[[Sequence[OpenFile], str, str], str]


@dataclass(frozen=True)
class ModelConfig:
    """A completion model family: name patterns, FIM prompt, stop tokens."""

    patterns: tuple[str, ...]
    template: FimTemplate
    stop: tuple[str, ...]

    def build_prompt(self, open_files: Sequence[OpenFile], prefix: str, suffix: str) -> str:
        return self.template(open_files, prefix, suffix)


def _qwen_prompt(open_files: Sequence[OpenFile], prefix: str, suffix: str) -> str:
    files = "".join(f"<|file_sep|>{f.path}\n{f.content}" for f in open_files)
    return f"{files}<|file_sep|><|fim_prefix|>{prefix}<|fim_suffix|>{suffix}<|fim_middle|>"


def _starcoder_prompt(open_files: Sequence[OpenFile], prefix: str, suffix: str) -> str:
    files = "".join(f"<file_sep>{f.path}\n{f.content}" for f in open_files)
    return f"{files}<file_sep><fim_prefix>{prefix}<fim_suffix>{suffix}<fim_middle>"


def _codellama_prompt(open_files: Sequence[OpenFile], prefix: str, suffix: str) -> str:
    return f"<PRE> {prefix} <SUF> {suffix} <MID>"


MODEL_CONFIGS: list[ModelConfig] = [
    ModelConfig(
        patterns=("codeqwen", "qwen2.5-coder", "qwen3-coder"),
        template=_qwen_prompt,
        stop=(
            "<|fim_prefix|>", "<|fim_suffix|>", "<|fim_middle|>", "<|file_sep|>",
            "<|cursor|>", "<|endoftext|>", "<|repo_name|>",
        ),
    ),
    ModelConfig(
        patterns=("starcoder:", "starcoder2:"),
        template=_starcoder_prompt,
        stop=("<fim_prefix>", "<fim_suffix>", "<fim_middle>", "<file_sep>"),
    ),
    ModelConfig(
        patterns=("codellama:7b", "codellama:13b"),
        template=_codellama_prompt,
        stop=("<PRE>", "<SUF>", "<MID>", "<CODE>", "<END>", "<EOT", "<EOD>"),
    ),
]


def normalize_model_name(name: str) -> str:
    """Lowercase and drop a ``:latest`` tag."""
    normalized = name.lower()
    if normalized.endswith(":latest"):
        normalized = normalized[: -len(":latest")]
    return normalized


def models_match(a: str, b: str) -> bool:
    return normalize_model_name(a) == normalize_model_name(b)


def supported_models() -> list[str]:
    return [p for cfg in MODEL_CONFIGS for p in cfg.patterns]


def find_model_config(model: str) -> ModelConfig | None:
    lower = model.lower()
    for cfg in MODEL_CONFIGS:
        if any(p in lower for p in cfg.patterns):
            return cfg
    return None


AGENT_SYSTEM_PROMPT = "\n".join([
    "You are a helpful coding assistant with access to tools for reading, "
    "searching, editing files, and inspecting the project.",
    "",
    "Guidelines:",
    "- Use readFile to see a file's content before editing it.",
    "- Never guess file paths or content. If you are unsure, ask the user.",
    "- Explain what you're doing and why before making changes.",
])


def commit_message_prompt(diff: str) -> str:
    return "\n".join([
        "SYSTEM:",
        "You are a senior code reviewer and editor.",
        "",
        "===== INSTRUCTION =====",
        "Write a concise, descriptive commit message for the following git diff.",
        "- Use conventional commits format (type: description)",
        "- Types: feat, fix, docs, style, refactor, perf, test, chore, build, ci",
        "- Keep the first line under 72 characters",
        "- Be specific about what changed",
        "- Do not include any explanation, only output the commit message",
        "- If there are multiple logical changes, use bullet points for the body",
        "",
        "<diff>",
        diff,
        "</diff>",
        "",
        "===== OUTPUT FORMAT =====",
        "Common git commit message format. Without explanation in code fences.",
    ])
