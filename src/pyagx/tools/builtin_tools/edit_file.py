from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from ..base import ToolSpec, ToolContext, ToolError, InvalidInput, str_arg
from ...util.diff import unified_diff
from ...util.fs import resolve_path, FsError


class NoChangesRequested(ToolError):
    def __init__(self) -> None:
        super().__init__("old_str and new_str are the same; no changes requested")


class NothingChanged(ToolError):
    def __init__(self) -> None:
        super().__init__("old_str was not found in the file; nothing will change")


@dataclass
class EditFile:
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="edit_file",
        description=(
            "Edit an existing file by replacing every occurrence of old_str with new_str. "
            "old_str must match the file contents exactly."
        ),
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the project directory."},
                "old_str": {"type": "string", "description": "Exact text to replace (non-empty)."},
                "new_str": {"type": "string", "description": "Replacement text."},
            },
            "required": ["path", "old_str", "new_str"],
        },
    )
    needs_confirmation: ClassVar[bool] = True

    path: str
    old_str: str
    new_str: str

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "EditFile":
        return cls(
            path=str_arg(args, "path"),
            old_str=str_arg(args, "old_str"),
            new_str=str_arg(args, "new_str"),
        )

    def summary(self) -> str:
        return f"edit_file '{self.path}'"

    def validate(self) -> None:
        if not self.path:
            raise InvalidInput("invalid input provided: path cannot be empty")
        if not self.old_str:
            raise InvalidInput("invalid input provided: old_str cannot be empty")
        try:
            resolve_path(Path("."), self.path)
        except FsError as e:
            raise InvalidInput(str(e))
        if self.old_str == self.new_str:
            raise NoChangesRequested()

    def _load(self, ctx: ToolContext) -> tuple[Path, str]:
        p = resolve_path(Path(ctx.cwd), self.path)
        if not p.exists():
            raise ToolError(f"file not found: {self.path}")
        if not p.is_file():
            raise ToolError("provided path is not a file")
        try:
            with p.open("r", encoding="utf-8", newline="") as f:
                return p, f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ToolError(f"couldn't read file: {e}")

    def _apply(self, old: str) -> tuple[str, int]:
        count = old.count(self.old_str)
        if count == 0:
            raise NothingChanged()
        return old.replace(self.old_str, self.new_str), count

    async def details(self, ctx: ToolContext) -> str | None:
        self.validate()
        _, old = self._load(ctx)
        new, _ = self._apply(old)
        return unified_diff(old, new, self.path)

    async def execute(self, ctx: ToolContext) -> str:
        self.validate()
        p, old = self._load(ctx)
        new, count = self._apply(old)
        data = new.encode("utf-8")
        try:
            p.write_bytes(data)
        except OSError as e:
            raise ToolError(f"couldn't write to file: {e}")
        return json.dumps({"path": self.path, "replacements": count, "num_bytes_written": len(data)})
