from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant"]

@dataclass
class Text:
    text: str

    def to_obj(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}

@dataclass
class Reasoning:
    reasoning: str

    def to_obj(self) -> dict[str, Any]:
        return {"type": "reasoning", "reasoning": self.reasoning}

@dataclass
class ToolCall:
    id: str
    name: str
    # Parsed JSON when the model sent valid JSON, otherwise the raw string.
    arguments: Any
    # Some backends pair each call with a second id.
    call_id: str | None = None

    def to_obj(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "tool_call", "id": self.id, "name": self.name, "arguments": self.arguments}
        if self.call_id is not None:
            d["call_id"] = self.call_id
        return d

@dataclass
class ToolResult:
    id: str
    content: str
    call_id: str | None = None

    def to_obj(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "tool_result", "id": self.id, "content": self.content}
        if self.call_id is not None:
            d["call_id"] = self.call_id
        return d

ContentItem = Union[Text, Reasoning, ToolCall, ToolResult]

def _item_from_obj(obj: dict[str, Any]) -> ContentItem:
    t = obj.get("type")
    if t == "text":
        return Text(text=obj["text"])
    if t == "reasoning":
        return Reasoning(reasoning=obj["reasoning"])
    if t == "tool_call":
        return ToolCall(id=obj["id"], name=obj["name"], arguments=obj.get("arguments"), call_id=obj.get("call_id"))
    if t == "tool_result":
        return ToolResult(id=obj["id"], content=obj["content"], call_id=obj.get("call_id"))
    raise ValueError(f"unknown content item type: {t!r}")

@dataclass
class Message:
    role: Role
    content: list[ContentItem] = field(default_factory=list)

    @staticmethod
    def user(text: str) -> "Message":
        return Message(role="user", content=[Text(text)])

    @staticmethod
    def tool_results(results: list[ToolResult]) -> "Message":
        return Message(role="user", content=list(results))

    def tool_calls(self) -> list[ToolCall]:
        return [c for c in self.content if isinstance(c, ToolCall)]

    def results(self) -> list[ToolResult]:
        return [c for c in self.content if isinstance(c, ToolResult)]

    def text(self) -> str:
        return "".join(c.text for c in self.content if isinstance(c, Text))

    def summary(self) -> str:
        first = self.content[0] if self.content else None
        if self.role == "assistant":
            return "assistant"
        if isinstance(first, Text):
            return f"text: {first.text}"
        if isinstance(first, ToolResult):
            return f"tool_result: id={first.id}"
        return "other"

    def to_obj(self) -> dict[str, Any]:
        return {"role": self.role, "content": [c.to_obj() for c in self.content]}

    @staticmethod
    def from_obj(obj: dict[str, Any]) -> "Message":
        role = obj.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown role: {role!r}")
        return Message(role=role, content=[_item_from_obj(c) for c in obj.get("content") or []])

def history_to_obj(history: list[Message]) -> list[dict[str, Any]]:
    return [m.to_obj() for m in history]

def unanswered_tool_calls(history: list[Message]) -> list[ToolCall]:
    """Tool calls in ``history`` that have no matching tool result."""
    answered = {r.id for m in history for r in m.results()}
    return [tc for m in history for tc in m.tool_calls() if tc.id not in answered]
