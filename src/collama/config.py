"""Configuration for collama.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./collama.yaml``
  3. ``~/.config/collama/config.yaml``
  4. Built-in defaults

Bearer tokens may be left out of the file and supplied through
``COLLAMA_BEARER_COMPLETION`` / ``COLLAMA_BEARER_INSTRUCT``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from collama.types import ApiEndpoint, RequestCategory

_logger = logging.getLogger(__name__)

SUGGEST_MODES = ("inline", "multiline", "multiblock")

_BEARER_ENV = {
    RequestCategory.COMPLETION: "COLLAMA_BEARER_COMPLETION",
    RequestCategory.INSTRUCTION: "COLLAMA_BEARER_INSTRUCT",
}


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class EndpointSpec:
    """Server URL, model and credential for one request category."""

    url: str = "http://127.0.0.1:11434"
    model: str = "qwen2.5-coder:3b"
    bearer: str = ""

    def to_endpoint(self) -> ApiEndpoint:
        return ApiEndpoint(url=self.url, bearer=self.bearer)


@dataclass
class CollamaConfig:
    """Top-level configuration."""

    completion: EndpointSpec = field(default_factory=EndpointSpec)
    instruction: EndpointSpec = field(
        default_factory=lambda: EndpointSpec(model="qwen2.5-coder:3b-instruct")
    )

    # Completion behaviour
    suggest_mode: str = "inline"  # "inline" | "multiline" | "multiblock"
    tokens_predict_completion: int = 400

    # Fallback context window when detection fails
    tokens_receive_default: int = 4096

    # Agent loop
    agent_max_rounds: int = 25

    # Root that built-in tools are confined to
    workspace_root: str = "."

    def endpoint(self, category: RequestCategory) -> EndpointSpec:
        if category is RequestCategory.COMPLETION:
            return self.completion
        return self.instruction


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./collama.yaml"),
    Path.home() / ".config" / "collama" / "config.yaml",
]


class ConfigError(ValueError):
    """Raised for a config file that parses but holds invalid values."""


def _parse_endpoint(
    raw: dict[str, Any] | None,
    default: EndpointSpec,
    category: RequestCategory,
) -> EndpointSpec:
    raw = raw or {}
    bearer = raw.get("bearer") or os.environ.get(_BEARER_ENV[category], "")
    return EndpointSpec(
        url=str(raw.get("url", default.url)).rstrip("/"),
        model=raw.get("model", default.model),
        bearer=bearer,
    )


def _apply_env_bearers(config: CollamaConfig) -> CollamaConfig:
    for category in RequestCategory:
        spec = config.endpoint(category)
        if not spec.bearer:
            spec.bearer = os.environ.get(_BEARER_ENV[category], "")
    return config


def load_config(path: str | Path | None = None) -> CollamaConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Raises
    ------
    ConfigError
        If the file sets ``suggest_mode`` to an unknown value or a numeric
        limit to something that is not a positive integer.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return _apply_env_bearers(CollamaConfig())
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return _apply_env_bearers(CollamaConfig())

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    defaults = CollamaConfig()
    suggest_mode = raw.get("suggest_mode", defaults.suggest_mode)
    if suggest_mode not in SUGGEST_MODES:
        raise ConfigError(
            f"suggest_mode must be one of {', '.join(SUGGEST_MODES)}, got {suggest_mode!r}"
        )

    limits: dict[str, int] = {}
    for key in ("tokens_predict_completion", "tokens_receive_default", "agent_max_rounds"):
        value = raw.get(key, getattr(defaults, key))
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}")
        limits[key] = value

    return CollamaConfig(
        completion=_parse_endpoint(
            raw.get("completion"), defaults.completion, RequestCategory.COMPLETION,
        ),
        instruction=_parse_endpoint(
            raw.get("instruction"), defaults.instruction, RequestCategory.INSTRUCTION,
        ),
        suggest_mode=suggest_mode,
        workspace_root=raw.get("workspace_root", defaults.workspace_root),
        **limits,
    )
