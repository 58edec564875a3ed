"""Tests for toolchat.config: TOML loading, merging, and CLI integration."""

import argparse
import tomllib

import pytest

from toolchat import agent, fmt
from toolchat.agent import build_agent, build_parser
from toolchat.config import (
    _ARGPARSE_DEFAULTS,
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {dest: _UNSET for dest in _ARGPARSE_DEFAULTS}
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path):
        assert load_config(tmp_path) == {}

    def test_global_dir_respects_xdg(self, tmp_path):
        assert global_config_dir() == tmp_path / "xdg" / "toolchat"

    def test_global_only(self, tmp_path):
        _write_toml(tmp_path / "xdg" / "toolchat" / "config.toml", 'model = "openai/gpt-4o"\n')
        assert load_config(tmp_path / "project")["model"] == "openai/gpt-4o"

    def test_project_overrides_global(self, tmp_path):
        _write_toml(tmp_path / "xdg" / "toolchat" / "config.toml", "max_output_tokens = 10\n")
        _write_toml(tmp_path / "toolchat.toml", "max_output_tokens = 50\n")
        assert load_config(tmp_path)["max_output_tokens"] == 50

    def test_unknown_keys_warn(self, tmp_path, capsys):
        _write_toml(tmp_path / "toolchat.toml", 'unknown_key = "hi"\n')
        result = load_config(tmp_path)
        assert "unknown_key" not in result
        assert "unknown config key" in capsys.readouterr().err

    def test_invalid_toml_raises(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", "invalid = [\n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_relative_base_dir_resolved_against_file(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", 'base_dir = "src"\n')
        assert load_config(tmp_path)["base_dir"] == str(tmp_path / "src")


class TestTypeValidation:
    def test_string_where_int_expected(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", 'max_output_tokens = "big"\n')
        with pytest.raises(ConfigError, match="max_output_tokens.*expected int.*got str"):
            load_config(tmp_path)

    def test_toml_int_for_float_field(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", "temperature = 1\n")
        assert load_config(tmp_path)["temperature"] == 1

    def test_bool_for_int_field_raises(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", "thinking_budget = true\n")
        with pytest.raises(ConfigError, match="thinking_budget.*expected int.*got bool"):
            load_config(tmp_path)

    def test_bool_for_string_field_raises(self, tmp_path):
        _write_toml(tmp_path / "toolchat.toml", "model = true\n")
        with pytest.raises(ConfigError, match="model.*expected str.*got bool"):
            load_config(tmp_path)


class TestGenerateConfig:
    def test_template_is_valid_toml(self):
        lines = []
        for line in generate_config().splitlines():
            stripped = line.lstrip("# ").strip()
            if "=" in stripped:
                lines.append(stripped)
        parsed = tomllib.loads("\n".join(lines))
        assert parsed["max_output_tokens"] == 1024
        assert parsed["stream"] is True


# ===========================================================================
# Applying config to args
# ===========================================================================


class TestApplyConfig:
    def test_defaults_fill_unset(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.model == "anthropic/claude-3-5-haiku-latest"
        assert args.max_output_tokens == 1024
        assert args.stream is True
        assert args.verbose is False

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "openai/gpt-4o", "thinking": True})
        assert args.model == "openai/gpt-4o"
        assert args.thinking is True

    def test_cli_wins_over_config(self):
        args = _make_args(model="cli/model")
        apply_config_to_args(args, {"model": "file/model"})
        assert args.model == "cli/model"

    def test_color_key_drives_both_flags(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_color_key_ignored_when_cli_set(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False


# ===========================================================================
# Parser and startup
# ===========================================================================


class TestParser:
    def test_unset_by_default(self):
        args = build_parser().parse_args([])
        assert args.model is _UNSET
        assert args.stream is _UNSET

    def test_flags(self):
        args = build_parser().parse_args(
            ["-v", "--no-stream", "--thinking", "--thinking-budget", "2048", "--model", "x/y"]
        )
        assert args.verbose is True
        assert args.stream is False
        assert args.thinking is True
        assert args.thinking_budget == 2048
        assert args.model == "x/y"

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--color", "--no-color"])


class TestBuildAgent:
    def _args(self, tmp_path, **overrides):
        args = _make_args(base_dir=str(tmp_path), **overrides)
        apply_config_to_args(args, {})
        return args

    def test_wires_everything(self, tmp_path):
        a = build_agent(self._args(tmp_path, stream=False))
        assert a.stream is False
        assert "read_file" in a.registry
        assert a.transport.thinking_budget is None

    def test_thinking_raises_max_tokens(self, tmp_path, monkeypatch):
        notes = []
        monkeypatch.setattr(fmt, "info", notes.append)
        a = build_agent(self._args(tmp_path, thinking=True, thinking_budget=2048))
        assert a.transport.thinking_budget == 2048
        assert a.transport.max_output_tokens == 2048 + 1024
        assert notes == ["max output tokens raised to 3072 to fit the thinking budget of 2048"]

    def test_thinking_within_max_tokens_is_quiet(self, tmp_path, monkeypatch):
        notes = []
        monkeypatch.setattr(fmt, "info", notes.append)
        a = build_agent(
            self._args(tmp_path, thinking=True, thinking_budget=512, max_output_tokens=4096)
        )
        assert a.transport.max_output_tokens == 4096
        assert notes == []

    def test_bad_base_dir(self, tmp_path):
        with pytest.raises(ConfigError, match="not a directory"):
            build_agent(self._args(tmp_path / "missing"))


class TestMain:
    def test_init_config(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            agent.main(["--init-config"])
        assert exc_info.value.code == 0
        assert "toolchat configuration file" in capsys.readouterr().out

    def test_bad_config_exits_nonzero(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write_toml(tmp_path / "toolchat.toml", "invalid = [\n")
        errors = []
        monkeypatch.setattr(fmt, "error", errors.append)
        with pytest.raises(SystemExit) as exc_info:
            agent.main([])
        assert exc_info.value.code == 1
        assert "invalid TOML" in errors[0]

    def test_runs_agent(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ran = []
        monkeypatch.setattr(agent.Agent, "run", lambda self: ran.append(self))
        monkeypatch.setattr(fmt, "init_logging", lambda verbose=False: None)
        agent.main(["--no-config", "--no-color"])
        assert len(ran) == 1
        assert ran[0].transport.model == "anthropic/claude-3-5-haiku-latest"
