from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from ..base import ToolSpec, ToolContext, ToolError, InvalidInput, str_arg
from ...util.fs import resolve_path, read_text, FsError

@dataclass
class ReadFile:
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="read_file",
        description="Read a text file in the project directory.",
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the project directory."},
            },
            "required": ["path"],
        },
    )
    needs_confirmation: ClassVar[bool] = False

    path: str

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "ReadFile":
        return cls(path=str_arg(args, "path"))

    def summary(self) -> str:
        return f"read_file '{self.path}'"

    def validate(self) -> None:
        if not self.path:
            raise InvalidInput("invalid input provided: path cannot be empty")
        try:
            resolve_path(Path("."), self.path)
        except FsError as e:
            raise InvalidInput(str(e))

    async def details(self, ctx: ToolContext) -> str | None:
        return None

    async def execute(self, ctx: ToolContext) -> str:
        self.validate()
        p = resolve_path(Path(ctx.cwd), self.path)
        if not p.is_file():
            raise ToolError(f"file not found: {self.path}")
        try:
            return read_text(p)
        except OSError as e:
            raise ToolError(f"couldn't read file: {e}")
