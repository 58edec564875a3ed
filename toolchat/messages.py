"""Conversation data model: content blocks, messages, and the append-only log.

A Message's content is either a plain string (ordinary user input) or a
tuple of content blocks. Blocks are one of exactly four variants:
TextBlock, ThinkingBlock, ToolUseBlock and ToolResultBlock.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from .errors import ConversationError


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ThinkingBlock:
    thinking: str
    signature: str | None = None
    type: str = field(default="thinking", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any]
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: str = field(default="tool_result", init=False)


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock]

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    role: str
    content: str | tuple[ContentBlock, ...]

    def __post_init__(self):
        if self.role not in ROLES:
            raise ConversationError(f"unknown role {self.role!r}")
        if not isinstance(self.content, str):
            # Freeze whatever sequence the caller handed us
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        """Content as blocks; plain text input is seen as a single TextBlock."""
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks if isinstance(b, ToolResultBlock)]

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))


def user_text(text: str) -> Message:
    return Message("user", text)


def assistant(blocks) -> Message:
    return Message("assistant", tuple(blocks))


def tool_results(results) -> Message:
    return Message("user", tuple(results))


class Conversation:
    """Ordered, append-only log of messages for one process run.

    Every append is checked against the transcript shape the model APIs
    expect: an assistant message always follows a user message, and the
    tool_use blocks of an assistant message are answered, one tool_result
    per identifier, by the very next message.
    """

    def __init__(self):
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index):
        return self._messages[index]

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def pending_tool_uses(self) -> list[ToolUseBlock]:
        """Tool uses of the last assistant message that still need a result."""
        last = self.last
        if last is None or last.role != "assistant":
            return []
        return last.tool_uses

    def append(self, message: Message) -> None:
        self._check(message)
        self._messages.append(message)

    def _check(self, message: Message) -> None:
        last = self.last
        pending = {b.id for b in self.pending_tool_uses()}

        if message.role == "assistant":
            if isinstance(message.content, str):
                raise ConversationError("assistant content must be a block sequence")
            if message.tool_results:
                raise ConversationError("assistant message cannot carry tool results")
            if last is None or last.role != "user":
                raise ConversationError("assistant message must follow a user message")
            ids = [b.id for b in message.tool_uses]
            if len(ids) != len(set(ids)):
                raise ConversationError("duplicate tool_use id in assistant message")
            return

        results = message.tool_results
        if pending:
            answered = [r.tool_use_id for r in results]
            if len(answered) != len(set(answered)) or set(answered) != pending:
                raise ConversationError(
                    f"tool results {sorted(answered)} do not answer "
                    f"pending tool uses {sorted(pending)}"
                )
        elif results:
            raise ConversationError("tool results without a pending tool use")
