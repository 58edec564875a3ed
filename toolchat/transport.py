"""Model transport over LiteLLM.

Converts the block-structured conversation into OpenAI-style chat messages,
calls litellm.completion, and turns the answer back into blocks. In
streaming mode the raw chunks are translated into BlockStart / BlockDelta /
BlockStop / MessageStop events for the reconciler.
"""

import json
import logging
from typing import Iterable, Iterator

from .errors import TransportError
from .messages import (
    Message,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    assistant,
)
from .registry import ToolDescriptor
from .stream import BlockDelta, BlockStart, BlockStop, MessageStop

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic/claude-3-5-haiku-latest"
DEFAULT_MAX_OUTPUT_TOKENS = 1024
DEFAULT_THINKING_BUDGET = 1024


def to_wire(conversation: Iterable[Message], system_prompt: str | None = None) -> list[dict]:
    """Flatten block messages into the chat-completions message list."""
    wire: list[dict] = []
    if system_prompt:
        wire.append({"role": "system", "content": system_prompt})

    for msg in conversation:
        if isinstance(msg.content, str):
            wire.append({"role": msg.role, "content": msg.content})
            continue

        if msg.role == "assistant":
            wire.append(_assistant_to_wire(msg))
            continue

        texts = []
        for block in msg.content:
            if isinstance(block, ToolResultBlock):
                content = block.content
                if block.is_error:
                    content = f"error: {content}"
                wire.append(
                    {"role": "tool", "tool_call_id": block.tool_use_id, "content": content}
                )
            elif isinstance(block, TextBlock):
                texts.append(block.text)
            elif isinstance(block, (ThinkingBlock, ToolUseBlock)):
                raise TransportError(f"{block.type} block in a user message")
            else:
                raise TypeError(f"unhandled content block {block!r}")
        if texts:
            wire.append({"role": "user", "content": "\n".join(texts)})
    return wire


def _assistant_to_wire(msg: Message) -> dict:
    texts: list[str] = []
    tool_calls: list[dict] = []
    thinking_blocks: list[dict] = []
    for block in msg.content:
        if isinstance(block, TextBlock):
            texts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            tool_calls.append(
                {
                    "id": block.id,
                    "type": "function",
                    "function": {
                        "name": block.name,
                        "arguments": json.dumps(block.input),
                    },
                }
            )
        elif isinstance(block, ThinkingBlock):
            # Providers only accept reasoning back when it carries their signature
            if block.signature:
                thinking_blocks.append(
                    {
                        "type": "thinking",
                        "thinking": block.thinking,
                        "signature": block.signature,
                    }
                )
        elif isinstance(block, ToolResultBlock):
            raise TransportError("tool_result block in an assistant message")
        else:
            raise TypeError(f"unhandled content block {block!r}")

    out: dict = {"role": "assistant", "content": "".join(texts) or None}
    if tool_calls:
        out["tool_calls"] = tool_calls
    if thinking_blocks:
        out["thinking_blocks"] = thinking_blocks
    return out


def _parse_arguments(name: str, raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise TransportError(f"invalid JSON in arguments for tool {name!r}: {e}")
    if not isinstance(value, dict):
        raise TransportError(f"arguments for tool {name!r} are not an object")
    return value


def _signature(source) -> str | None:
    for tb in getattr(source, "thinking_blocks", None) or []:
        sig = tb.get("signature") if isinstance(tb, dict) else getattr(tb, "signature", None)
        if sig:
            return sig
    return None


def from_response_message(message) -> Message:
    """Convert a litellm response message into an assistant Message."""
    blocks: list = []
    reasoning = getattr(message, "reasoning_content", None)
    signature = _signature(message)
    if reasoning or signature:
        blocks.append(ThinkingBlock(reasoning or "", signature=signature))
    if message.content:
        blocks.append(TextBlock(message.content))
    for tc in getattr(message, "tool_calls", None) or []:
        name = tc.function.name
        blocks.append(
            ToolUseBlock(
                id=tc.id, name=name, input=_parse_arguments(name, tc.function.arguments)
            )
        )
    return assistant(blocks)


def chunks_to_events(chunks) -> Iterator:
    """Translate chat-completion stream chunks into reconciler events.

    Chat completions have no explicit block boundaries, so a change in
    delta kind (reasoning, content, or tool call index) closes the open
    block and opens the next one.
    """
    kind = None
    tool_index = None
    tool_id = None
    stop_reason = None

    for chunk in chunks:
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        choice = choices[0]
        delta = getattr(choice, "delta", None)

        if delta is not None:
            reasoning = getattr(delta, "reasoning_content", None)
            signature = _signature(delta)
            if reasoning or signature:
                if kind != "thinking":
                    if kind is not None:
                        yield BlockStop()
                    kind = "thinking"
                    yield BlockStart("thinking")
                yield BlockDelta("thinking", reasoning or "", signature=signature)

            content = getattr(delta, "content", None)
            if content:
                if kind != "text":
                    if kind is not None:
                        yield BlockStop()
                    kind = "text"
                    yield BlockStart("text")
                yield BlockDelta("text", content)

            for tc in getattr(delta, "tool_calls", None) or []:
                index = getattr(tc, "index", None)
                new_call = (index is not None and index != tool_index) or (
                    tc.id and tc.id != tool_id
                )
                if kind != "tool_use" or new_call:
                    if kind is not None:
                        yield BlockStop()
                    kind = "tool_use"
                    tool_index = index
                    tool_id = tc.id
                    yield BlockStart("tool_use", id=tc.id, name=tc.function.name)
                if tc.function.arguments:
                    yield BlockDelta("tool_use", tc.function.arguments)

        if getattr(choice, "finish_reason", None):
            stop_reason = choice.finish_reason

    if kind is not None:
        yield BlockStop()
    yield MessageStop(stop_reason)


class LiteLLMTransport:
    """send()/stream() against any provider litellm supports."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        system_prompt: str | None = None,
        thinking_budget: int | None = None,
    ):
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.api_key = api_key
        self.base_url = base_url
        self.system_prompt = system_prompt
        self.thinking_budget = thinking_budget

    def _kwargs(self, conversation, descriptors: Iterable[ToolDescriptor]) -> dict:
        kwargs: dict = dict(
            model=self.model,
            messages=to_wire(conversation, self.system_prompt),
            max_tokens=self.max_output_tokens,
        )
        tools = [d.to_function_schema() for d in descriptors]
        if tools:
            kwargs["tools"] = tools
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url
        if self.thinking_budget:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        return kwargs

    def _completion(self, **kwargs):
        import litellm

        litellm.suppress_debug_info = True
        logger.debug(
            "Calling model %s with max_tokens=%s", kwargs["model"], kwargs["max_tokens"]
        )
        try:
            return litellm.completion(**kwargs)
        except Exception as e:
            logger.debug("LLM call failed: %s", e)
            raise TransportError(f"LLM call failed: {e}") from e

    def send(self, conversation, descriptors) -> Message:
        response = self._completion(**self._kwargs(conversation, descriptors))
        try:
            choice = response.choices[0]
        except (AttributeError, IndexError) as e:
            raise TransportError(f"malformed LLM response: {e}") from e
        logger.debug("LLM responded, finish_reason=%s", choice.finish_reason)
        return from_response_message(choice.message)

    def stream(self, conversation, descriptors) -> Iterator:
        chunks = self._completion(stream=True, **self._kwargs(conversation, descriptors))
        return _guard(chunks_to_events(chunks))


def _guard(events: Iterator) -> Iterator:
    """Re-raise mid-stream provider failures as TransportError."""
    try:
        yield from events
    except TransportError:
        raise
    except Exception as e:
        logger.debug("LLM stream failed: %s", e)
        raise TransportError(f"LLM call failed: {e}") from e
