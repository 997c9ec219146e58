from __future__ import annotations
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from ..base import ToolSpec, ToolContext, ToolError, InvalidInput, str_arg
from ...util.fs import resolve_path, FsError

@dataclass
class CreateFile:
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="create_file",
        description="Create a new file with contents. Fails if the path already exists.",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the project directory."},
                "contents": {"type": "string", "description": "Contents to write."},
            },
            "required": ["path", "contents"],
        },
    )
    needs_confirmation: ClassVar[bool] = True

    path: str
    contents: str

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "CreateFile":
        return cls(path=str_arg(args, "path"), contents=str_arg(args, "contents"))

    def summary(self) -> str:
        return f"create_file '{self.path}'"

    def validate(self) -> None:
        if not self.path:
            raise InvalidInput("invalid input provided: path cannot be empty")
        try:
            resolve_path(Path("."), self.path)
        except FsError as e:
            raise InvalidInput(str(e))

    async def details(self, ctx: ToolContext) -> str | None:
        return self.contents

    async def execute(self, ctx: ToolContext) -> str:
        self.validate()
        p = resolve_path(Path(ctx.cwd), self.path)
        if p.is_dir():
            raise ToolError("a directory already exists at this path")
        if p.exists() or p.is_symlink():
            raise ToolError("file already exists")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ToolError(f"couldn't create directory: {e}")
        data = self.contents.encode("utf-8")
        try:
            with p.open("xb") as f:
                f.write(data)
        except FileExistsError:
            raise ToolError("file already exists")
        except OSError as e:
            raise ToolError(f"couldn't write to file: {e}")
        return json.dumps({"path": self.path, "num_bytes_written": len(data)})
