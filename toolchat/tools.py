"""Built-in tools: file reading, directory listing, shell commands, search, editing.

Every executor takes the tool_use input mapping and returns text, or raises
ToolExecutionError with a message meant for the model.
"""

import fnmatch
import functools
import os
import re
import subprocess
import sys
from pathlib import Path

from .edit import replace
from .errors import ToolExecutionError
from .registry import Tool, ToolDescriptor, ToolRegistry

MAX_OUTPUT_BYTES = 50 * 1024  # 50 KB
MAX_LINE_LENGTH = 2000
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_GREP_MATCHES = 100
DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 120

READ_FILE = ToolDescriptor(
    name="read_file",
    description=(
        "Read the contents of a given relative file path. "
        "Use this when you want to see what's inside a file. "
        "Do not use this with directory names."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to read.",
            },
        },
        "required": ["path"],
    },
)

LIST_DIRECTORY = ToolDescriptor(
    name="list_directory",
    description=(
        "List the entries of a directory. Subdirectories end with a slash. "
        "Defaults to the current directory."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": 'Path to the directory to list. Defaults to ".".',
            },
        },
    },
)

RUN_COMMAND = ToolDescriptor(
    name="run_command",
    description=(
        "Run a shell command in the working directory and return its combined "
        "stdout and stderr. Supports pipes and redirects."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": 'Shell command string, e.g. "ls -la | head".',
            },
            "timeout": {
                "type": "integer",
                "description": f"Timeout in seconds (1-{MAX_TIMEOUT}).",
            },
        },
        "required": ["command"],
    },
)

GREP = ToolDescriptor(
    name="grep",
    description=(
        "Search file contents for a regex pattern. "
        "Returns matching lines as path:line: text."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Python regex pattern to search for.",
            },
            "path": {
                "type": "string",
                "description": 'Directory or file to search. Defaults to ".".',
            },
            "include": {
                "type": "string",
                "description": 'Glob pattern to filter filenames, e.g. "*.py".',
            },
        },
        "required": ["pattern"],
    },
)

EDIT_FILE = ToolDescriptor(
    name="edit_file",
    description=(
        "Make an edit to a text file by replacing old_string with new_string. "
        "old_string must match exactly one place unless replace_all is set. "
        "If the file does not exist and old_string is empty, the file is created "
        "with new_string as its content."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to edit.",
            },
            "old_string": {
                "type": "string",
                "description": "The exact text to find and replace.",
            },
            "new_string": {
                "type": "string",
                "description": "The replacement text.",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace all occurrences.",
            },
        },
        "required": ["path", "old_string", "new_string"],
    },
)


def _resolve(path: str, base_dir: str) -> Path:
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = Path(base_dir) / p
    return p


def _require_str(args: dict, key: str, default: str | None = None) -> str:
    value = args.get(key, default)
    if value is None:
        raise ToolExecutionError(f"missing required argument: {key}")
    if not isinstance(value, str):
        raise ToolExecutionError(
            f"argument {key!r} must be a string, got {type(value).__name__}"
        )
    return value


def _cap(text: str, marker: str) -> str:
    data = text.encode("utf-8")
    if len(data) <= MAX_OUTPUT_BYTES:
        return text
    return data[:MAX_OUTPUT_BYTES].decode("utf-8", errors="ignore") + marker


def read_file(args: dict, base_dir: str = ".") -> str:
    path = _require_str(args, "path")
    resolved = _resolve(path, base_dir)

    if not resolved.exists():
        raise ToolExecutionError(f"file not found: {path}")
    if resolved.is_dir():
        raise ToolExecutionError(
            f"{path} is a directory, use list_directory instead"
        )

    try:
        with open(resolved, "rb") as f:
            chunk = f.read(BINARY_CHECK_BYTES)
        if b"\x00" in chunk:
            raise ToolExecutionError(f"binary file detected: {path}")
        text = resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ToolExecutionError(f"failed to decode {path} as UTF-8: {exc}")
    except OSError as exc:
        raise ToolExecutionError(str(exc))

    return _cap(text, "\n[truncated at 50KB]")


def list_directory(args: dict, base_dir: str = ".") -> str:
    path = _require_str(args, "path", ".")
    resolved = _resolve(path, base_dir)

    if not resolved.exists():
        raise ToolExecutionError(f"path does not exist: {path}")
    if not resolved.is_dir():
        raise ToolExecutionError(f"path is not a directory: {path}")

    try:
        names = [
            child.name + ("/" if child.is_dir() else "")
            for child in sorted(resolved.iterdir())
        ]
    except OSError as exc:
        raise ToolExecutionError(str(exc))

    return _cap("\n".join(names), "\n[truncated at 50KB]")


def run_command(
    args: dict, base_dir: str = ".", default_timeout: int = DEFAULT_TIMEOUT
) -> str:
    command = _require_str(args, "command")
    if not command.strip():
        raise ToolExecutionError("command is empty")

    timeout = args.get("timeout", default_timeout)
    if not isinstance(timeout, int) or isinstance(timeout, bool):
        raise ToolExecutionError("timeout must be an integer")
    timeout = max(1, min(timeout, MAX_TIMEOUT))

    if not Path(base_dir).is_dir():
        raise ToolExecutionError(f"base directory is not a directory: {base_dir}")

    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", command]
    else:
        shell_cmd = ["/bin/sh", "-c", command]

    kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        cwd=base_dir,
        timeout=timeout,
    )
    if sys.platform != "win32":
        kwargs["start_new_session"] = True

    try:
        proc = subprocess.run(shell_cmd, **kwargs)
    except subprocess.TimeoutExpired:
        raise ToolExecutionError(f"command timed out after {timeout}s")
    except OSError as exc:
        raise ToolExecutionError(f"failed to start shell command: {exc}")

    output = proc.stdout.decode("utf-8", errors="replace")
    parts = []
    if proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")
    if output:
        parts.append(output)
    result = "\n".join(parts) if parts else "(no output)"
    return _cap(result, "\n[output truncated at 50KB]")


def _iter_files(root: Path, include: str | None):
    if root.is_file():
        yield root
        return
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d != ".git")
        for filename in sorted(files):
            if include and not fnmatch.fnmatch(filename, include):
                continue
            yield Path(dirpath) / filename


def grep(args: dict, base_dir: str = ".") -> str:
    pattern = _require_str(args, "pattern")
    path = _require_str(args, "path", ".")
    include = args.get("include")

    try:
        regex = re.compile(pattern)
    except re.error as exc:
        raise ToolExecutionError(f"invalid regex {pattern!r}: {exc}")

    root = _resolve(path, base_dir)
    if not root.exists():
        raise ToolExecutionError(f"path does not exist: {path}")

    base = Path(base_dir)
    matches: list[str] = []
    truncated = False
    for filepath in _iter_files(root, include):
        try:
            with open(filepath, "rb") as f:
                if b"\x00" in f.read(BINARY_CHECK_BYTES):
                    continue
            text = filepath.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue

        try:
            rel = filepath.relative_to(base)
        except ValueError:
            rel = filepath
        for line_no, line in enumerate(text.splitlines(), start=1):
            if regex.search(line):
                if len(matches) >= MAX_GREP_MATCHES:
                    truncated = True
                    break
                matches.append(f"{rel.as_posix()}:{line_no}: {line[:MAX_LINE_LENGTH]}")
        if truncated:
            break

    if not matches:
        return "No matches found."
    result = "\n".join(matches)
    if truncated:
        result += (
            f"\n(Results truncated: showing first {MAX_GREP_MATCHES} matches. "
            "Use a more specific pattern or path.)"
        )
    return _cap(result, "\n[truncated at 50KB]")


def edit_file(args: dict, base_dir: str = ".") -> str:
    path = _require_str(args, "path")
    old_string = _require_str(args, "old_string")
    new_string = _require_str(args, "new_string")
    replace_all = bool(args.get("replace_all", False))
    resolved = _resolve(path, base_dir)

    if not resolved.exists():
        if old_string:
            raise ToolExecutionError(f"file not found: {path}")
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(new_string, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(str(exc))
        return f"Created {path}"

    if resolved.is_dir():
        raise ToolExecutionError(f"{path} is a directory")

    try:
        content = resolved.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as exc:
        raise ToolExecutionError(str(exc))

    try:
        new_content = replace(content, old_string, new_string, replace_all=replace_all)
    except ValueError as exc:
        raise ToolExecutionError(f"{exc} in {path}")

    try:
        resolved.write_text(new_content, encoding="utf-8")
    except OSError as exc:
        raise ToolExecutionError(str(exc))
    return f"Edited {path}"


def build_tools(base_dir: str = ".", command_timeout: int = DEFAULT_TIMEOUT) -> list[Tool]:
    """Bind the built-in executors to a working directory."""
    return [
        Tool(READ_FILE, functools.partial(read_file, base_dir=base_dir)),
        Tool(LIST_DIRECTORY, functools.partial(list_directory, base_dir=base_dir)),
        Tool(
            RUN_COMMAND,
            functools.partial(
                run_command, base_dir=base_dir, default_timeout=command_timeout
            ),
        ),
        Tool(GREP, functools.partial(grep, base_dir=base_dir)),
        Tool(EDIT_FILE, functools.partial(edit_file, base_dir=base_dir)),
    ]


def build_registry(base_dir: str = ".", command_timeout: int = DEFAULT_TIMEOUT) -> ToolRegistry:
    return ToolRegistry(build_tools(base_dir, command_timeout))
