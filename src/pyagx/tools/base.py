from __future__ import annotations
from dataclasses import dataclass
from typing import Any

@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    permission_key: str          # "read" | "edit" | "bash"

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

@dataclass
class ToolContext:
    cwd: str
    # Default timeout for run_cmd when the model does not pass one.
    cmd_timeout: float = 120

class ToolError(RuntimeError):
    """A tool refused its arguments or failed while running.

    Reported back to the model as text; never fatal to the turn.
    """

class InvalidInput(ToolError):
    pass

class ForbiddenCommand(ToolError):
    def __init__(self, pattern: str):
        super().__init__(f"command contains a forbidden pattern: {pattern}")
        self.pattern = pattern

class ToolCallParseError(ValueError):
    """The model's tool call could not be turned into an invocation."""

def str_arg(args: dict[str, Any], key: str, *, required: bool = True, default: str | None = None) -> str | None:
    v = args.get(key, default)
    if v is None:
        if required:
            raise ToolCallParseError(f"missing field `{key}`")
        return None
    if not isinstance(v, str):
        raise ToolCallParseError(f"field `{key}` must be a string, got {type(v).__name__}")
    return v
