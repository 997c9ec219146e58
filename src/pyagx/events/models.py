from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..session.models import Message, Reasoning, ToolCall, ToolResult, history_to_obj

LLM_REQUEST = "llm_request"
ASSISTANT_TEXT = "assistant_text"
TOOL_CALL = "tool_call"
REASONING = "reasoning"
TOOL_RESULT = "tool_result"
STREAM_COMPLETE = "stream_complete"
TURN_COMPLETE = "turn_complete"
INTERRUPTED = "interrupted"
NEW_SESSION = "new_session"

KINDS = frozenset({
    LLM_REQUEST, ASSISTANT_TEXT, TOOL_CALL, REASONING, TOOL_RESULT,
    STREAM_COMPLETE, TURN_COMPLETE, INTERRUPTED, NEW_SESSION,
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DebugEvent:
    """A timestamped lifecycle record.

    ``data`` is already plain JSON-shaped data (snapshotted at creation), so
    later history mutation never leaks into a published event.
    """

    kind: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"unknown debug event kind: {self.kind}")

    def to_obj(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "payload": {"kind": self.kind, **self.data},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_obj(), ensure_ascii=False)

    @staticmethod
    def llm_request(prompt: Message, history: list[Message]) -> "DebugEvent":
        return DebugEvent(LLM_REQUEST, {"prompt": prompt.to_obj(), "history": history_to_obj(history)})

    @staticmethod
    def assistant_text(text: str) -> "DebugEvent":
        return DebugEvent(ASSISTANT_TEXT, {"text": text})

    @staticmethod
    def tool_call(tc: ToolCall) -> "DebugEvent":
        return DebugEvent(TOOL_CALL, {"tool_call": tc.to_obj()})

    @staticmethod
    def reasoning(r: Reasoning) -> "DebugEvent":
        return DebugEvent(REASONING, {"reasoning": r.reasoning})

    @staticmethod
    def tool_result(r: ToolResult) -> "DebugEvent":
        return DebugEvent(TOOL_RESULT, {"tool_result": r.to_obj()})

    @staticmethod
    def stream_complete() -> "DebugEvent":
        return DebugEvent(STREAM_COMPLETE)

    @staticmethod
    def turn_complete(history: list[Message]) -> "DebugEvent":
        return DebugEvent(TURN_COMPLETE, {"history": history_to_obj(history)})

    @staticmethod
    def interrupted() -> "DebugEvent":
        return DebugEvent(INTERRUPTED)

    @staticmethod
    def new_session() -> "DebugEvent":
        return DebugEvent(NEW_SESSION)
