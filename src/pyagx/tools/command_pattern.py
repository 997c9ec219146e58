from __future__ import annotations

import re
import shlex
from dataclasses import dataclass
from typing import Any, Iterable, Iterator


class CommandPatternError(ValueError):
    pass


# Anything that lets one command line run, or feed, a second program.
_SHELL_CONTROL = re.compile(r"[;&|<>`\n]|\$\(")


def has_shell_control(command: str) -> bool:
    return _SHELL_CONTROL.search(command) is not None


@dataclass(frozen=True)
class CommandPattern:
    """Coarse identity of a shell command: the binary plus its first argument.

    ``git`` (no first_arg) covers every git invocation; ``git commit`` covers
    only invocations whose first argument is ``commit``.
    """

    binary: str
    first_arg: str | None = None

    @staticmethod
    def parse(command: str) -> "CommandPattern":
        try:
            tokens = shlex.split(command)
        except ValueError as e:
            raise CommandPatternError(f"couldn't split command: {e}") from e
        if not tokens:
            raise CommandPatternError("command is empty")
        return CommandPattern(binary=tokens[0], first_arg=tokens[1] if len(tokens) > 1 else None)

    def matches(self, command: str) -> bool:
        try:
            other = CommandPattern.parse(command)
        except CommandPatternError:
            return False
        if other.binary != self.binary:
            return False
        if self.first_arg is None:
            return True
        return other.first_arg == self.first_arg

    def to_obj(self) -> dict[str, Any]:
        d: dict[str, Any] = {"binary": self.binary}
        if self.first_arg is not None:
            d["first_arg"] = self.first_arg
        return d

    @staticmethod
    def from_obj(obj: Any) -> "CommandPattern":
        if not isinstance(obj, dict):
            raise CommandPatternError(f"command pattern must be an object, got {type(obj).__name__}")
        binary = obj.get("binary")
        first_arg = obj.get("first_arg")
        if not isinstance(binary, str) or not binary:
            raise CommandPatternError("command pattern needs a non-empty 'binary'")
        if first_arg is not None and not isinstance(first_arg, str):
            raise CommandPatternError("'first_arg' must be a string when present")
        return CommandPattern(binary=binary, first_arg=first_arg)

    def __str__(self) -> str:
        if self.first_arg is None:
            return f"{self.binary} .*"
        return f"{self.binary} {self.first_arg} .*"


class ApprovedCommands:
    """Set of CommandPatterns the user chose to always allow."""

    def __init__(self, patterns: Iterable[CommandPattern] = ()) -> None:
        self._patterns: set[CommandPattern] = set(patterns)

    def is_approved(self, command: str) -> bool:
        return any(p.matches(command) for p in self._patterns)

    def insert(self, pattern: CommandPattern) -> bool:
        if pattern in self._patterns:
            return False
        self._patterns.add(pattern)
        return True

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._patterns

    def __iter__(self) -> Iterator[CommandPattern]:
        return iter(sorted(self._patterns, key=lambda p: (p.binary, p.first_arg or "")))

    def __len__(self) -> int:
        return len(self._patterns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApprovedCommands):
            return NotImplemented
        return self._patterns == other._patterns

    def to_obj(self) -> list[dict[str, Any]]:
        return [p.to_obj() for p in self]

    @staticmethod
    def from_obj(obj: Any) -> "ApprovedCommands":
        if not isinstance(obj, list):
            raise CommandPatternError("approved_commands must be a list")
        return ApprovedCommands(CommandPattern.from_obj(it) for it in obj)

    def __str__(self) -> str:
        if not self._patterns:
            return "none"
        return "".join(f"\n  - {p}" for p in self)
