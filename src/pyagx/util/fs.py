from __future__ import annotations

import re
from pathlib import Path, PurePath

_WHITESPACE = re.compile(r"\s")


class FsError(RuntimeError):
    pass


def is_path_in_workspace(path_str: str) -> bool:
    """True for relative paths with no '..' component.

    This is purely lexical: symlinks inside the project are not followed.
    """
    p = PurePath(path_str)
    if p.is_absolute() or path_str.startswith(("/", "\\")):
        return False
    return ".." not in p.parts


def resolve_path(cwd: Path, path_str: str) -> Path:
    if not is_path_in_workspace(path_str):
        raise FsError(f"path must be relative to the project directory and cannot contain '..': {path_str}")
    return cwd / path_str


def path_to_dirname(path: str | Path) -> str:
    """Flatten a path into a single directory name, e.g. /a/my app -> a-my-app."""
    parts = [p for p in PurePath(path).parts if p not in {"/", "\\", ".", ".."} and not p.endswith((":\\", ":/"))]
    return "-".join(_WHITESPACE.sub("-", p) for p in parts)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")
