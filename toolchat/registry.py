"""Tool registry: a fixed, ordered table of descriptors paired with executors."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable

from .errors import ToolNotFoundError

Executor = Callable[[dict[str, Any]], str]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_function_schema(self) -> dict:
        """OpenAI function-calling shape, as litellm expects it."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass(frozen=True)
class Tool:
    descriptor: ToolDescriptor
    execute: Executor

    @property
    def name(self) -> str:
        return self.descriptor.name


class ToolRegistry:
    """Immutable name -> Tool table, built once before the loop starts."""

    def __init__(self, tools: Iterable[Tool] = ()):
        table: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in table:
                raise ValueError(f"duplicate tool name: {tool.name!r}")
            table[tool.name] = tool
        self._tools = MappingProxyType(table)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def lookup(self, name: str) -> Executor:
        """Return the executor registered under exactly `name`.

        Raises ToolNotFoundError for unknown names; the loop turns that
        into an error tool_result rather than failing the turn.
        """
        try:
            return self._tools[name].execute
        except KeyError:
            raise ToolNotFoundError(name) from None

    def describe(self) -> tuple[ToolDescriptor, ...]:
        return tuple(t.descriptor for t in self._tools.values())
