"""Tests for the streaming reconciler."""

import pytest

from toolchat.errors import StreamProtocolError, TransportError
from toolchat.messages import TextBlock, ThinkingBlock, ToolUseBlock, assistant
from toolchat.stream import (
    BlockDelta,
    BlockStart,
    BlockStop,
    MessageStop,
    StreamAccumulator,
    reconcile,
)


class Recorder:
    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def record(*args):
            self.calls.append((name, *args))

        return record


def _text(*parts):
    yield BlockStart("text")
    for p in parts:
        yield BlockDelta("text", p)
    yield BlockStop()


# =========================================================================
# Reconstruction
# =========================================================================


class TestReconstruction:
    def test_text_fragments_concatenate(self):
        msg = reconcile([*_text("Hel", "lo", "!"), MessageStop("end_turn")])
        assert msg == assistant([TextBlock("Hello!")])

    def test_mixed_blocks_keep_order(self):
        events = [
            BlockStart("thinking"),
            BlockDelta("thinking", "Let me "),
            BlockDelta("thinking", "look.", signature="sig"),
            BlockStop(),
            *_text("Checking."),
            BlockStart("tool_use", id="t1", name="read_file"),
            BlockDelta("tool_use", '{"pa'),
            BlockDelta("tool_use", 'th": "a.txt"}'),
            BlockStop(),
            MessageStop("tool_use"),
        ]
        msg = reconcile(events)
        assert msg.content == (
            ThinkingBlock("Let me look.", signature="sig"),
            TextBlock("Checking."),
            ToolUseBlock(id="t1", name="read_file", input={"path": "a.txt"}),
        )

    def test_matches_non_streaming_result(self):
        expected = assistant(
            [
                TextBlock("Two tools."),
                ToolUseBlock(id="a", name="grep", input={"pattern": "x"}),
                ToolUseBlock(id="b", name="list_directory", input={}),
            ]
        )
        events = [
            *_text("Two ", "tools."),
            BlockStart("tool_use", id="a", name="grep"),
            BlockDelta("tool_use", '{"pattern": "x"}'),
            BlockStop(),
            BlockStart("tool_use", id="b", name="list_directory"),
            BlockStop(),
            MessageStop(),
        ]
        assert reconcile(events) == expected

    def test_empty_text_block_dropped(self):
        msg = reconcile([BlockStart("text"), BlockStop(), MessageStop()])
        assert msg.content == ()

    def test_stop_reason_recorded(self):
        acc = StreamAccumulator()
        for event in [*_text("hi"), MessageStop("max_tokens")]:
            acc.feed(event)
        assert acc.stop_reason == "max_tokens"
        assert acc.message().text == "hi"

    def test_events_after_stop_are_not_consumed(self):
        def events():
            yield from _text("hi")
            yield MessageStop()
            raise AssertionError("stream read past message stop")

        assert reconcile(events()).text == "hi"


# =========================================================================
# Protocol violations
# =========================================================================


class TestProtocolViolations:
    def test_is_a_transport_error(self):
        assert issubclass(StreamProtocolError, TransportError)

    @pytest.mark.parametrize(
        "events, match",
        [
            ([BlockDelta("text", "x")], "no open block"),
            ([BlockStop()], "no open block"),
            ([BlockStart("text"), BlockStart("text")], "before the open"),
            ([BlockStart("image")], "unknown block type"),
            ([BlockStart("tool_use", name="grep")], "without id and name"),
            ([BlockStart("text"), BlockDelta("thinking", "x")], "while a text block"),
            ([BlockStart("text"), MessageStop()], "while a text block is open"),
            ([MessageStop(), BlockStart("text")], "after message stop"),
            (["not an event"], "unknown stream event"),
        ],
    )
    def test_rejected(self, events, match):
        acc = StreamAccumulator()
        with pytest.raises(StreamProtocolError, match=match):
            for event in events:
                acc.feed(event)

    def test_duplicate_tool_use_id(self):
        events = [
            BlockStart("tool_use", id="x", name="grep"),
            BlockStop(),
            BlockStart("tool_use", id="x", name="grep"),
        ]
        with pytest.raises(StreamProtocolError, match="duplicate tool_use id 'x'"):
            reconcile(events)

    def test_truncated_stream(self):
        with pytest.raises(StreamProtocolError, match="before message stop"):
            reconcile(_text("cut off"))

    def test_incomplete_tool_arguments(self):
        events = [
            BlockStart("tool_use", id="t1", name="grep"),
            BlockDelta("tool_use", '{"pattern": '),
            BlockStop(),
        ]
        with pytest.raises(StreamProtocolError, match="incomplete arguments"):
            reconcile(events)

    def test_non_object_tool_arguments(self):
        events = [
            BlockStart("tool_use", id="t1", name="grep"),
            BlockDelta("tool_use", "[1, 2]"),
            BlockStop(),
        ]
        with pytest.raises(StreamProtocolError, match="not an object"):
            reconcile(events)


# =========================================================================
# Display forwarding
# =========================================================================


class TestDisplay:
    def test_text_forwarded_as_it_arrives(self):
        display = Recorder()
        reconcile([*_text("a", "b"), MessageStop()], display)
        assert display.calls == [("assistant_delta", "a"), ("assistant_delta", "b")]

    def test_thinking_streamed(self):
        display = Recorder()
        events = [
            BlockStart("thinking"),
            BlockDelta("thinking", "hmm"),
            BlockStop(),
            MessageStop(),
        ]
        reconcile(events, display)
        assert display.calls == [
            ("thinking_start",),
            ("thinking_delta", "hmm"),
            ("thinking_end",),
        ]

    def test_thinking_collapsed(self):
        display = Recorder()
        long = "a" * 80
        events = [
            BlockStart("thinking"),
            BlockDelta("thinking", long),
            BlockStop(),
            MessageStop(),
        ]
        msg = reconcile(events, display, collapse_thinking=True)
        assert display.calls == [("thinking_collapsed", "a" * 60 + "...")]
        # Collapsing only affects display
        assert msg.content == (ThinkingBlock(long),)

    def test_tool_arguments_not_displayed(self):
        display = Recorder()
        events = [
            BlockStart("tool_use", id="t1", name="grep"),
            BlockDelta("tool_use", "{}"),
            BlockStop(),
            MessageStop(),
        ]
        reconcile(events, display)
        assert display.calls == []
