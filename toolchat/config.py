"""Configuration file loading and merging for toolchat.

Reads TOML config from ~/.config/toolchat/config.toml (global) and
<cwd>/toolchat.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .transport import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_MODEL, DEFAULT_THINKING_BUDGET
from .tools import DEFAULT_TIMEOUT

_UNSET = object()  # Sentinel for "not set by CLI"

PROJECT_FILE = "toolchat.toml"

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "max_output_tokens": int,
    "temperature": (int, float),
    "system_prompt": str,
    "stream": bool,
    "thinking": bool,
    "thinking_budget": int,
    "collapse_thinking": bool,
    "base_dir": str,
    "command_timeout": int,
    "verbose": bool,
    "color": bool,
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "base_url": None,
    "max_output_tokens": DEFAULT_MAX_OUTPUT_TOKENS,
    "temperature": None,
    "system_prompt": None,
    "stream": True,
    "thinking": False,
    "thinking_budget": DEFAULT_THINKING_BUDGET,
    "collapse_thinking": False,
    "base_dir": ".",
    "command_timeout": DEFAULT_TIMEOUT,
    "verbose": False,
    "color": False,
    "no_color": False,
}


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "toolchat"
    return Path.home() / ".config" / "toolchat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> dict:
    """Check value types and return only the known keys.

    Unknown keys are reported on stderr and dropped.
    """
    known = {}
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject it for numeric keys explicitly
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, "
                f"got {type(value).__name__}"
            )
        known[key] = value
    return known


def _load_single(path: Path) -> dict:
    """Load and validate one TOML file. Returns an empty dict if it is missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{path}: cannot read file: {e}") from e

    config = _validate_config(config, str(path))
    if "base_dir" in config:
        p = Path(config["base_dir"]).expanduser()
        if not p.is_absolute():
            p = path.parent / p
        config["base_dir"] = str(p)
    return config


def load_config(project_dir: Path | str = ".") -> dict:
    """Load and merge global + project config.

    Returns a flat dict holding only the keys actually set in a file.
    """
    global_config = _load_single(global_config_dir() / "config.toml")
    project_config = _load_single(Path(project_dir).resolve() / PROJECT_FILE)
    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Fill args left at _UNSET from config, then from the hardcoded defaults."""

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key drives the --color/--no-color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key != "color" and _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def generate_config() -> str:
    """Return a commented-out template config file."""
    lines = [
        "# toolchat configuration file",
        f"# Global: ~/.config/toolchat/config.toml   Project: ./{PROJECT_FILE}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        f'# model = "{DEFAULT_MODEL}"',
        '# api_key = "sk-..."              # prefer provider env vars',
        '# base_url = "https://..."',
        f"# max_output_tokens = {DEFAULT_MAX_OUTPUT_TOKENS}",
        "# temperature = 0.7",
        '# system_prompt = "You are a helpful assistant."',
        "",
        "# stream = true",
        "# thinking = false",
        f"# thinking_budget = {DEFAULT_THINKING_BUDGET}",
        "# collapse_thinking = false",
        "",
        '# base_dir = "."',
        f"# command_timeout = {DEFAULT_TIMEOUT}",
        "",
        "# verbose = false",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "",
    ]
    return "\n".join(lines)
