"""Tests for collama config loading and option presets."""

from pathlib import Path

import pytest
import yaml

from collama.config import CollamaConfig, ConfigError, EndpointSpec, load_config
from collama.llm.options import (
    build_agent_options,
    build_commit_options,
    build_completion_options,
    build_completion_stop,
    build_instruction_options,
    empty_stop,
)
from collama.types import RequestCategory


@pytest.fixture(autouse=True)
def _no_env_bearers(monkeypatch):
    monkeypatch.delenv("COLLAMA_BEARER_COMPLETION", raising=False)
    monkeypatch.delenv("COLLAMA_BEARER_INSTRUCT", raising=False)


def _write(path: Path, data: dict) -> Path:
    path.write_text(yaml.dump(data))
    return path


class TestDefaults:
    def test_config_defaults(self):
        cfg = CollamaConfig()
        assert cfg.completion.url == "http://127.0.0.1:11434"
        assert cfg.instruction.model == "qwen2.5-coder:3b-instruct"
        assert cfg.suggest_mode == "inline"
        assert cfg.tokens_predict_completion == 400
        assert cfg.tokens_receive_default == 4096

    def test_endpoint_by_category(self):
        cfg = CollamaConfig()
        assert cfg.endpoint(RequestCategory.COMPLETION) is cfg.completion
        assert cfg.endpoint(RequestCategory.INSTRUCTION) is cfg.instruction

    def test_to_endpoint(self):
        ep = EndpointSpec(url="http://x", bearer="b").to_endpoint()
        assert ep.url == "http://x"
        assert ep.bearer == "b"


class TestLoadConfig:
    def test_load_from_explicit_path(self, tmp_path: Path):
        path = _write(tmp_path / "c.yaml", {
            "completion": {"url": "http://gpu:8000/", "model": "starcoder2:3b"},
            "instruction": {"url": "http://gpu:8001", "model": "qwen3:8b", "bearer": "secret"},
            "suggest_mode": "multiline",
            "agent_max_rounds": 5,
        })
        cfg = load_config(path)
        assert cfg.completion.url == "http://gpu:8000"
        assert cfg.completion.model == "starcoder2:3b"
        assert cfg.instruction.bearer == "secret"
        assert cfg.suggest_mode == "multiline"
        assert cfg.agent_max_rounds == 5
        assert cfg.tokens_predict_completion == 400

    def test_missing_explicit_path_gives_defaults(self, tmp_path: Path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg == CollamaConfig()

    def test_search_path_discovery(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write(tmp_path / "collama.yaml", {"suggest_mode": "multiblock"})
        assert load_config().suggest_mode == "multiblock"

    def test_no_file_found(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("collama.config._SEARCH_PATHS", [tmp_path / "missing.yaml"])
        assert load_config() == CollamaConfig()

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == CollamaConfig()

    def test_bearer_from_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("COLLAMA_BEARER_INSTRUCT", "env-token")
        path = _write(tmp_path / "c.yaml", {"instruction": {"url": "http://x"}})
        cfg = load_config(path)
        assert cfg.instruction.bearer == "env-token"
        assert cfg.completion.bearer == ""

    def test_invalid_suggest_mode(self, tmp_path: Path):
        path = _write(tmp_path / "c.yaml", {"suggest_mode": "everything"})
        with pytest.raises(ConfigError, match="suggest_mode"):
            load_config(path)

    @pytest.mark.parametrize("value", [0, -3, "many", True])
    def test_invalid_limits(self, tmp_path: Path, value):
        path = _write(tmp_path / "c.yaml", {"agent_max_rounds": value})
        with pytest.raises(ConfigError, match="agent_max_rounds"):
            load_config(path)


class TestOptionPresets:
    @pytest.mark.parametrize("mode,predict", [
        ("multiblock", 400),
        ("multiline", 200),
        ("inline", 100),
    ])
    def test_completion_predict_scales_with_mode(self, mode, predict):
        opts = build_completion_options(CollamaConfig(suggest_mode=mode), 8192)
        assert opts.num_predict == predict
        assert opts.num_ctx == 8192
        assert (opts.temperature, opts.top_p, opts.top_k) == (0.4, 0.8, 20)

    def test_instruction_commit_agent(self):
        assert build_instruction_options(1).to_dict() == {
            "num_ctx": 1, "num_predict": 16384, "temperature": 0.8, "top_p": 0.95, "top_k": 40,
        }
        assert build_commit_options(1).temperature == 0.3
        agent = build_agent_options(32768)
        assert (agent.num_ctx, agent.temperature, agent.top_p, agent.top_k) == (32768, 0.1, 0.9, 20)

    @pytest.mark.parametrize("mode,user_stop", [
        ("inline", ["\n", "\r\n"]),
        ("multiline", ["\n\n", "\r\n\r\n"]),
        ("multiblock", []),
    ])
    def test_completion_stop(self, mode, user_stop):
        stop = build_completion_stop(CollamaConfig(suggest_mode=mode), ["<|fim_prefix|>"])
        assert stop.user_stop == user_stop
        assert stop.tokens() == [*user_stop, "<|fim_prefix|>"]

    def test_empty_stop(self):
        assert empty_stop().tokens() == []
