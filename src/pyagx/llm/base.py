from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, Union

from ..session.models import Message, ToolCall


class ProviderError(RuntimeError):
    """The completion stream could not be started or failed mid-way."""


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    reasoning: str


@dataclass(frozen=True)
class ToolCallItem:
    tool_call: ToolCall


@dataclass(frozen=True)
class Final:
    usage: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int | None:
        v = self.usage.get("total_tokens")
        return int(v) if isinstance(v, (int, float)) else None


StreamItem = Union[TextDelta, ReasoningDelta, ToolCallItem, Final]


class CompletionProvider(Protocol):
    provider_name: str
    model: str

    def stream(
        self,
        prompt: Message,
        history: list[Message],
        *,
        preamble: str,
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamItem]:
        """Start one completion request and yield items as they arrive.

        Closing the iterator must release the underlying connection.
        """
        ...
