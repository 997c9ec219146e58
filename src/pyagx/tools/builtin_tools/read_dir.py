from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from ..base import ToolSpec, ToolContext, ToolError, InvalidInput, str_arg
from ...util.fs import resolve_path, FsError

@dataclass
class ReadDir:
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="read_dir",
        description=(
            "List entries of a directory in the project. Each entry has name, kind (file/dir) "
            "and, for files, size in bytes."
        ),
        permission_key="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to the project directory. Default '.'"},
            },
            "required": ["path"],
        },
    )
    needs_confirmation: ClassVar[bool] = False

    path: str = "."

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "ReadDir":
        return cls(path=str_arg(args, "path", default="."))

    def summary(self) -> str:
        return f"read_dir '{self.path or '.'}'"

    def validate(self) -> None:
        try:
            resolve_path(Path("."), self.path)
        except FsError as e:
            raise InvalidInput(str(e))

    async def details(self, ctx: ToolContext) -> str | None:
        return None

    async def execute(self, ctx: ToolContext) -> str:
        self.validate()
        p = resolve_path(Path(ctx.cwd), self.path or ".")
        if not p.exists():
            raise ToolError(f"path not found: {self.path}")
        if not p.is_dir():
            raise ToolError("path is not a directory")

        entries = []
        try:
            children = sorted(p.iterdir(), key=lambda x: x.name)
        except OSError as e:
            raise ToolError(f"couldn't read directory: {e}")
        for child in children:
            try:
                st = child.stat()
            except OSError:
                # dangling symlink
                st = None
            is_dir = child.is_dir()
            entry: dict[str, Any] = {
                "name": str(Path(self.path or ".") / child.name) if self.path not in ("", ".") else child.name,
                "kind": "dir" if is_dir else "file",
            }
            if not is_dir and st is not None and child.is_file():
                entry["size"] = st.st_size
            entries.append(entry)
        return json.dumps(entries)
