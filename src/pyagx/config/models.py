from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..tools.command_pattern import ApprovedCommands, CommandPatternError


class ConfigError(RuntimeError):
    pass


@dataclass
class LocalConfig:
    """Per-project settings persisted in .pyagx/config.local.json.

    Only approved command patterns are stored; the file-mutation approval is
    session-scoped and never written.
    """

    approved_commands: ApprovedCommands = field(default_factory=ApprovedCommands)

    @staticmethod
    def from_obj(obj: Any) -> "LocalConfig":
        if not isinstance(obj, dict):
            raise ConfigError("config root must be a JSON object")
        try:
            cmds = ApprovedCommands.from_obj(obj.get("approved_commands", []))
        except CommandPatternError as e:
            raise ConfigError(f"invalid approved_commands: {e}") from e
        return LocalConfig(approved_commands=cmds)

    def to_obj(self) -> dict[str, Any]:
        return {"approved_commands": self.approved_commands.to_obj()}
