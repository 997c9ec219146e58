from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass
from typing import Any, ClassVar

from ..base import ToolSpec, ToolContext, ToolError, InvalidInput, ForbiddenCommand, ToolCallParseError, str_arg
from ..command_pattern import CommandPattern
from ...util.subprocess import run_shell

# Substrings that are never run, whatever the user has approved. This is a
# heuristic, not a sandbox.
BLOCKED_CMD_PATTERNS: tuple[str, ...] = (
    "rm -rf",
    "sudo",
    "curl",
    "wget",
    "dd if=",
    "mkfs",
    "fdisk",
    "format",
    "deltree",
    "rmdir /s",
    "nc",
    "netcat",
    "telnet",
    "ssh-keygen",
    "passwd",
    "useradd",
    "userdel",
    "chmod 777",
    "chown root",
    "python -c",
    "perl -e",
    "ruby -e",
    "node -e",
)

@dataclass
class RunCommand:
    spec: ClassVar[ToolSpec] = ToolSpec(
        name="run_cmd",
        description=(
            "Run a shell command via the system shell in the project directory. Returns the "
            "command's success flag, exit status code (if available), stdout, and stderr."
        ),
        permission_key="bash",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to run."},
                "timeout": {"type": "integer", "description": "Timeout in seconds (optional)."},
            },
            "required": ["command"],
        },
    )
    needs_confirmation: ClassVar[bool] = True

    command: str
    timeout: float | None = None

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> "RunCommand":
        timeout = args.get("timeout")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
            raise ToolCallParseError("field `timeout` must be a number")
        return cls(command=str_arg(args, "command"), timeout=timeout)

    def summary(self) -> str:
        return f"run_cmd: {self.command}"

    def pattern(self) -> CommandPattern:
        return CommandPattern.parse(self.command)

    def validate(self) -> None:
        if not self.command.strip():
            raise InvalidInput("command is empty")
        for pattern in BLOCKED_CMD_PATTERNS:
            if pattern in self.command:
                raise ForbiddenCommand(pattern)
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidInput("timeout must be positive")

    async def details(self, ctx: ToolContext) -> str | None:
        return None

    async def execute(self, ctx: ToolContext) -> str:
        self.validate()
        timeout = self.timeout or ctx.cmd_timeout
        try:
            res = await run_shell(self.command, cwd=ctx.cwd, timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolError(f"command timed out after {timeout:g} seconds")
        except OSError as e:
            raise ToolError(f"couldn't run command: {e}")
        return json.dumps({
            "success": res.returncode == 0,
            "status_code": res.returncode,
            "stdout": res.stdout,
            "stderr": res.stderr,
        })
