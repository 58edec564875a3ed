"""Streaming reconciler: rebuild an assistant Message from incremental events.

The transport translates its wire chunks into four event types. The
StreamAccumulator consumes them one at a time, keeps at most one block
open, forwards text and thinking fragments to the display as they arrive,
and yields the same block sequence a non-streaming call would return.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable

from .errors import StreamProtocolError
from .messages import Message, TextBlock, ThinkingBlock, ToolUseBlock, assistant

logger = logging.getLogger(__name__)

BLOCK_KINDS = ("text", "thinking", "tool_use")
COLLAPSED_SUMMARY_CHARS = 60


@dataclass(frozen=True)
class BlockStart:
    kind: str
    id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class BlockDelta:
    kind: str
    text: str = ""
    signature: str | None = None


@dataclass(frozen=True)
class BlockStop:
    pass


@dataclass(frozen=True)
class MessageStop:
    stop_reason: str | None = None


StreamEvent = BlockStart | BlockDelta | BlockStop | MessageStop


@dataclass
class _OpenBlock:
    kind: str
    id: str | None = None
    name: str | None = None
    parts: list[str] = field(default_factory=list)
    signature: str | None = None


class StreamAccumulator:
    """Per-turn state machine; never reused across turns."""

    def __init__(self, display=None, collapse_thinking: bool = False):
        self.display = display
        self.collapse_thinking = collapse_thinking
        self.blocks: list = []
        self.current: _OpenBlock | None = None
        self.stop_reason: str | None = None
        self.done = False

    def feed(self, event: StreamEvent) -> None:
        if self.done:
            raise StreamProtocolError(f"event after message stop: {event!r}")

        if isinstance(event, BlockStart):
            self._start(event)
        elif isinstance(event, BlockDelta):
            self._delta(event)
        elif isinstance(event, BlockStop):
            self._stop()
        elif isinstance(event, MessageStop):
            if self.current is not None:
                raise StreamProtocolError(
                    f"message stop while a {self.current.kind} block is open"
                )
            self.stop_reason = event.stop_reason
            self.done = True
        else:
            raise StreamProtocolError(f"unknown stream event: {event!r}")

    def message(self) -> Message:
        if not self.done:
            raise StreamProtocolError("stream ended before message stop")
        return assistant(self.blocks)

    def _start(self, event: BlockStart) -> None:
        if self.current is not None:
            raise StreamProtocolError(
                f"{event.kind} block started before the open "
                f"{self.current.kind} block stopped"
            )
        if event.kind not in BLOCK_KINDS:
            raise StreamProtocolError(f"unknown block type {event.kind!r}")
        if event.kind == "tool_use" and not (event.id and event.name):
            raise StreamProtocolError("tool_use block started without id and name")
        if event.kind == "tool_use" and any(
            isinstance(b, ToolUseBlock) and b.id == event.id for b in self.blocks
        ):
            raise StreamProtocolError(f"duplicate tool_use id {event.id!r}")

        self.current = _OpenBlock(kind=event.kind, id=event.id, name=event.name)
        if event.kind == "thinking" and self.display and not self.collapse_thinking:
            self.display.thinking_start()

    def _delta(self, event: BlockDelta) -> None:
        if self.current is None:
            raise StreamProtocolError(f"{event.kind} delta with no open block")
        if event.kind != self.current.kind:
            raise StreamProtocolError(
                f"{event.kind} delta while a {self.current.kind} block is open"
            )

        if event.signature:
            self.current.signature = event.signature
        if not event.text:
            return
        self.current.parts.append(event.text)

        if self.display is None:
            return
        if event.kind == "text":
            self.display.assistant_delta(event.text)
        elif event.kind == "thinking" and not self.collapse_thinking:
            self.display.thinking_delta(event.text)

    def _stop(self) -> None:
        block = self.current
        if block is None:
            raise StreamProtocolError("block stop with no open block")
        self.current = None
        text = "".join(block.parts)

        if block.kind == "text":
            if text:
                self.blocks.append(TextBlock(text))
        elif block.kind == "thinking":
            if self.display:
                if self.collapse_thinking:
                    self.display.thinking_collapsed(
                        text[:COLLAPSED_SUMMARY_CHARS] + "..."
                    )
                else:
                    self.display.thinking_end()
            if text or block.signature:
                self.blocks.append(ThinkingBlock(text, signature=block.signature))
        elif block.kind == "tool_use":
            self.blocks.append(
                ToolUseBlock(id=block.id, name=block.name, input=_parse_input(block))
            )


def _parse_input(block: _OpenBlock) -> dict:
    raw = "".join(block.parts)
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StreamProtocolError(
            f"incomplete arguments for tool {block.name!r}: {e}"
        ) from e
    if not isinstance(value, dict):
        raise StreamProtocolError(
            f"arguments for tool {block.name!r} are not an object"
        )
    return value


def reconcile(
    events: Iterable[StreamEvent], display=None, collapse_thinking: bool = False
) -> Message:
    """Drain an event stream into a finished assistant Message."""
    acc = StreamAccumulator(display, collapse_thinking=collapse_thinking)
    for event in events:
        acc.feed(event)
        if acc.done:
            break
    message = acc.message()
    logger.debug(
        "Stream reconciled: %d blocks, stop_reason=%s",
        len(message.blocks),
        acc.stop_reason,
    )
    return message
