import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import _UNSET, apply_config_to_args, generate_config, load_config
from .errors import (
    AgentError,
    ConfigError,
    ConversationError,
    ToolNotFoundError,
    TransportError,
)
from .messages import (
    Conversation,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    tool_results,
    user_text,
)
from .registry import ToolRegistry
from .stream import COLLAPSED_SUMMARY_CHARS, reconcile
from .tools import build_registry
from .transport import LiteLLMTransport

logger = logging.getLogger(__name__)

BANNER = "Chat with Claude (use 'ctrl-c' to quit)"
INTERRUPTED = "Interrupted by user"

# Loop states
AWAITING_INPUT = "awaiting_input"
SENDING = "sending"
INTERPRETING = "interpreting"
DISPATCHING = "dispatching"
IDLE = "idle"
SHUTDOWN = "shutdown"


class PromptInput:
    """Input surface: one line per call, None once input is exhausted."""

    def __init__(self):
        from prompt_toolkit import PromptSession

        self.session = PromptSession()

    def __call__(self) -> str | None:
        try:
            return self.session.prompt(fmt.user_prompt())
        except (EOFError, KeyboardInterrupt):
            return None


class Agent:
    """Drives one conversation: input, model calls, and tool dispatch.

    The model is re-invoked after every response that contains tool_use
    blocks; a response with none ends the turn. Tools run one at a time in
    the order the model listed them, and their failures are reported back
    to the model as error tool_results instead of ending the turn.
    """

    def __init__(
        self,
        transport,
        registry: ToolRegistry,
        *,
        display=fmt,
        read_line=None,
        stream: bool = True,
        collapse_thinking: bool = False,
    ):
        self.transport = transport
        self.registry = registry
        self.display = display
        self.read_line = read_line
        self.stream = stream
        self.collapse_thinking = collapse_thinking
        self.conversation = Conversation()
        self.state = AWAITING_INPUT
        self._results: list[ToolResultBlock] = []

    def run(self) -> None:
        """Prompt for input until the input surface reports end of input."""
        if self.read_line is None:
            self.read_line = PromptInput()

        logger.debug("Conversation started")
        self.display.banner(BANNER)

        while True:
            self.state = AWAITING_INPUT
            line = self.read_line()
            if line is None:
                logger.debug("User input ended, breaking from chat loop")
                break
            self.run_turn(line)

        self.state = SHUTDOWN
        logger.debug("Conversation ended")

    def submit_turn(self, text: str) -> bool:
        """Append the user's text as typed. Empty input is dropped and returns False."""
        if not text:
            logger.debug("Skipping empty message")
            return False
        logger.debug("User input received: %r", text)
        self.conversation.append(user_text(text))
        return True

    def run_turn(self, text: str) -> Message | None:
        """Run one full turn; returns the final assistant message, if any.

        Transport failures end the turn and are shown to the user; the
        conversation keeps everything appended before the failure.
        """
        if not self.submit_turn(text):
            return None

        final = None
        try:
            final = self._drive()
        except TransportError as e:
            logger.debug("Error during inference: %s", e)
            self.display.error(str(e))
        except KeyboardInterrupt:
            self._abort_turn()
            self.display.warning("interrupted, turn aborted.")
        finally:
            self.display.finish_turn()
            self.state = AWAITING_INPUT
        return final

    def _drive(self) -> Message:
        while True:
            message = self.run_inference()
            try:
                self.conversation.append(message)
            except ConversationError as e:
                raise TransportError(f"malformed model response: {e}") from e
            results = self.interpret(message)
            if not results:
                self.state = IDLE
                return message

            logger.debug("Sending tool results to model, count: %d", len(results))
            self.conversation.append(tool_results(results))
            self._results = []

    def run_inference(self) -> Message:
        """Send the whole conversation and return the assistant's reply."""
        self.state = SENDING
        logger.debug(
            "Sending conversation to model, length: %d", len(self.conversation)
        )
        descriptors = self.registry.describe()
        if self.stream:
            events = self.transport.stream(self.conversation.messages, descriptors)
            message = reconcile(
                events, self.display, collapse_thinking=self.collapse_thinking
            )
        else:
            message = self.transport.send(self.conversation.messages, descriptors)
        self.state = INTERPRETING
        logger.debug("Received response with %d blocks", len(message.blocks))
        return message

    def interpret(self, message: Message) -> list[ToolResultBlock]:
        """Show text and dispatch tool uses in block order.

        Returns one tool_result per tool_use block; an empty list means the
        turn is over. Streamed text has already been shown by the
        reconciler, so only non-streamed blocks are displayed here.
        """
        self._results = []
        for block in message.blocks:
            if isinstance(block, TextBlock):
                if not self.stream:
                    self.display.assistant_text(block.text)
            elif isinstance(block, ThinkingBlock):
                if not self.stream and block.thinking:
                    if self.collapse_thinking:
                        self.display.thinking_collapsed(
                            block.thinking[:COLLAPSED_SUMMARY_CHARS] + "..."
                        )
                    else:
                        self.display.thinking(block.thinking)
            elif isinstance(block, ToolUseBlock):
                self.state = DISPATCHING
                self._results.append(self.dispatch(block))
            elif isinstance(block, ToolResultBlock):
                # Unreachable once appended; Conversation rejects these
                raise ConversationError("tool_result block in an assistant message")
            else:
                raise TypeError(f"unhandled content block {block!r}")
        return list(self._results)

    def dispatch(self, block: ToolUseBlock) -> ToolResultBlock:
        """Run one tool_use and map its outcome to a tool_result."""
        name = block.name
        try:
            execute = self.registry.lookup(name)
        except ToolNotFoundError as e:
            logger.error("Tool not found: %s", name)
            self.display.tool_end(name, False)
            return ToolResultBlock(block.id, str(e), is_error=True)

        logger.debug("Using tool: %s", name)
        self.display.tool_start(name, block.input)
        try:
            output = execute(dict(block.input))
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Tool execution failed: %s: %s", name, message)
            self.display.tool_end(name, False)
            return ToolResultBlock(block.id, message, is_error=True)

        if output is None:
            output = ""
        elif not isinstance(output, str):
            output = str(output)
        logger.debug("Tool execution successful: %s, result length: %d", name, len(output))
        self.display.tool_end(name, True)
        return ToolResultBlock(block.id, output or "(no output)")

    def _abort_turn(self) -> None:
        """Answer any tool_use left open by an interrupt so the transcript stays valid."""
        pending = self.conversation.pending_tool_uses()
        if not pending:
            return
        done = {r.tool_use_id: r for r in self._results}
        results = [
            done.get(b.id) or ToolResultBlock(b.id, INTERRUPTED, is_error=True)
            for b in pending
        ]
        self.conversation.append(tool_results(results))
        self._results = []


def build_parser():
    """Build and return the argument parser.

    Defaults are _UNSET so config files can fill in anything the command
    line leaves out.
    """
    parser = argparse.ArgumentParser(
        prog="toolchat",
        description="Chat with a language model that can read, search, edit files and run commands.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=_UNSET,
        help="Enable diagnostic logging on stderr.",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="LiteLLM model identifier (default: anthropic/claude-3-5-haiku-latest).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (overrides the provider's env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Override the provider's API base URL.",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per model call (default: 1024).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="System prompt sent with every model call.",
    )
    stream_group = parser.add_mutually_exclusive_group()
    stream_group.add_argument(
        "--stream",
        dest="stream",
        action="store_true",
        default=_UNSET,
        help="Stream responses as they are generated (default).",
    )
    stream_group.add_argument(
        "--no-stream",
        dest="stream",
        action="store_false",
        default=_UNSET,
        help="Wait for each complete response before showing it.",
    )
    parser.add_argument(
        "--thinking",
        action="store_true",
        default=_UNSET,
        help="Enable extended thinking on models that support it.",
    )
    parser.add_argument(
        "--thinking-budget",
        type=int,
        default=_UNSET,
        help="Token budget for extended thinking (default: 1024).",
    )
    parser.add_argument(
        "--collapse-thinking",
        action="store_true",
        default=_UNSET,
        help="Show a one-line summary of each thinking block instead of the full text.",
    )
    parser.add_argument(
        "--base-dir",
        default=_UNSET,
        help="Working directory for tools (default: current directory).",
    )
    parser.add_argument(
        "--command-timeout",
        type=int,
        default=_UNSET,
        help="Default run_command timeout in seconds (default: 30).",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when output is a TTY.",
    )

    parser.add_argument(
        "--no-config",
        action="store_true",
        help="Ignore config files.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a template config file and exit.",
    )
    return parser


def build_agent(args) -> Agent:
    """Wire transport, tool registry, and display together from resolved args."""
    if args.max_output_tokens < 1:
        raise ConfigError("--max-output-tokens must be at least 1")

    base_dir = Path(args.base_dir).expanduser()
    if not base_dir.is_dir():
        raise ConfigError(f"--base-dir is not a directory: {args.base_dir}")

    max_output_tokens = args.max_output_tokens
    thinking_budget = None
    if args.thinking:
        thinking_budget = args.thinking_budget
        if thinking_budget < 1:
            raise ConfigError("--thinking-budget must be at least 1")
        # The thinking budget is spent out of max_tokens
        if max_output_tokens <= thinking_budget:
            max_output_tokens = thinking_budget + args.max_output_tokens
            fmt.info(
                f"max output tokens raised to {max_output_tokens} "
                f"to fit the thinking budget of {thinking_budget}"
            )

    transport = LiteLLMTransport(
        args.model,
        max_output_tokens=max_output_tokens,
        temperature=args.temperature,
        api_key=args.api_key,
        base_url=args.base_url,
        system_prompt=args.system_prompt,
        thinking_budget=thinking_budget,
    )
    registry = build_registry(str(base_dir), command_timeout=args.command_timeout)
    logger.debug("Tools registered: %s", ", ".join(registry.names()))
    return Agent(
        transport,
        registry,
        stream=args.stream,
        collapse_thinking=args.collapse_thinking,
    )


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("toolchat")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    try:
        config = {} if args.no_config else load_config(Path.cwd())
        apply_config_to_args(args, config)
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    fmt.init(color=args.color, no_color=args.no_color)
    fmt.init_logging(args.verbose)
    logger.debug("verbose logging enabled")

    try:
        build_agent(args).run()
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error")
        sys.exit(1)


if __name__ == "__main__":
    main()
