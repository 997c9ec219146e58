from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

from .base import ToolSpec

@dataclass
class ToolRegistry:
    """Maps model-facing tool names to invocation classes.

    Only used to parse a tool call; everything after that dispatches on the
    invocation type.
    """
    _tools: Dict[str, type] = field(default_factory=dict)

    def register(self, tool_cls: type) -> None:
        name = tool_cls.spec.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool_cls

    def get_optional(self, name: str) -> Optional[type]:
        return self._tools.get(name)

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def to_openai(self) -> list[dict]:
        return [s.to_openai() for s in self.list_specs()]
