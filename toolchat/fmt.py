"""Console output using Rich: conversation on stdout, diagnostics on stderr."""

import logging

from prompt_toolkit.formatted_text import FormattedText
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

_out = Console()
_console = Console(stderr=True)

# Per-turn display state: the "Claude ›" prefix is printed once per turn,
# and streamed fragments leave the cursor mid-line until something ends it.
_turn_started = False
_mid_line = False

ASSISTANT_LABEL = "Claude"


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _out, _console
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _out = Console(**kwargs)
    _console = Console(stderr=True, **kwargs)


def init_logging(verbose: bool = False) -> None:
    """Route the toolchat loggers to stderr through Rich."""
    logger = logging.getLogger("toolchat")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = RichHandler(console=_console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def _end_line() -> None:
    global _mid_line
    if _mid_line:
        _out.print()
        _mid_line = False


def _prefix() -> Text:
    text = Text()
    text.append(ASSISTANT_LABEL, style="bold green")
    text.append(" › ", style="dim")
    return text


# -- Session -----------------------------------------------------------------


def banner(message: str) -> None:
    _out.print(Panel(Text(message, style="bold"), border_style="cyan", expand=False))
    _out.print()


def user_prompt() -> FormattedText:
    return FormattedText([("bold fg:ansiblue", "You"), ("", " › ")])


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    """Print a whole text block. The label appears once per turn."""
    global _turn_started
    _end_line()
    line = Text()
    if not _turn_started:
        _out.print()
        line.append_text(_prefix())
        _turn_started = True
    line.append(text)
    _out.print(line)


def assistant_delta(fragment: str) -> None:
    """Print a streamed text fragment without a trailing newline."""
    global _turn_started, _mid_line
    if not _turn_started:
        _end_line()
        _out.print()
        _out.print(_prefix(), end="")
        _turn_started = True
    _out.print(Text(fragment), end="", soft_wrap=True)
    _mid_line = True


def finish_turn() -> None:
    global _turn_started
    _end_line()
    if _turn_started:
        _out.print()
    _turn_started = False


# -- Thinking ----------------------------------------------------------------


def thinking_start() -> None:
    global _mid_line
    _end_line()
    _out.print()
    _out.print(Text("\U0001f4ad Thinking...", style="bold cyan"))
    _mid_line = False


def thinking_delta(fragment: str) -> None:
    global _mid_line
    _out.print(Text(fragment, style="dim cyan"), end="", soft_wrap=True)
    _mid_line = True


def thinking_end() -> None:
    _end_line()


def thinking(text: str) -> None:
    """Print a complete thinking block (non-streaming responses)."""
    thinking_start()
    _out.print(Text(text, style="dim cyan"))


def thinking_collapsed(summary: str) -> None:
    _end_line()
    line = Text()
    line.append("\U0001f4ad ", style="dim")
    line.append(summary, style="dim italic")
    _out.print(line)


# -- Tool calls --------------------------------------------------------------


def tool_start(name: str, args: dict | None = None) -> None:
    _end_line()
    header = Text()
    header.append("\n⚡ ", style="yellow")
    header.append("Calling ", style="bold")
    header.append(name, style="bold yellow")
    _console.print(header)
    for key, value in (args or {}).items():
        line = Text()
        line.append(f"   {key}", style="dim")
        line.append(": ")
        line.append(str(value), style="cyan")
        _console.print(line)


def tool_end(name: str, ok: bool) -> None:
    line = Text()
    if ok:
        line.append("✓ ", style="green")
        line.append("Finished ", style="bold")
        line.append(name, style="bold green")
    else:
        line.append("✗ ", style="red")
        line.append("Failed ", style="bold")
        line.append(name, style="bold red")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    _end_line()
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    _end_line()
    line = Text()
    line.append("✖ ", style="red")
    line.append("Error", style="bold red")
    line.append(f": {msg}", style="red")
    _console.print(line)
