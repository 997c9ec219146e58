from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax

from .base import ToolContext
from .builtin_tools.create_file import CreateFile
from .builtin_tools.edit_file import EditFile
from .builtin_tools.run_cmd import RunCommand
from .command_pattern import ApprovedCommands, CommandPatternError, has_shell_control
from .invocation import FILE_MUTATIONS, ToolInvocation, needs_confirmation
from ..config.loader import save_local_config
from ..config.models import ConfigError, LocalConfig

logger = logging.getLogger(__name__)

console = Console()

Prompter = Callable[[str], Awaitable[str]]


class Decision(Enum):
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    FEEDBACK = "feedback"


@dataclass(frozen=True)
class Confirmation:
    decision: Decision
    feedback: str | None = None


APPROVED = Confirmation(Decision.APPROVED)
AUTO_APPROVED = Confirmation(Decision.AUTO_APPROVED)
REJECTED = Confirmation(Decision.REJECTED)


@dataclass
class PermissionRecord:
    """What the user has agreed to for this session."""

    fs_changes: bool = False
    approved_commands: ApprovedCommands = field(default_factory=ApprovedCommands)

    def is_approved(self, inv: ToolInvocation) -> bool:
        if isinstance(inv, FILE_MUTATIONS):
            return self.fs_changes
        if isinstance(inv, RunCommand):
            # A pattern only vouches for the first program on the line.
            if has_shell_control(inv.command):
                return False
            return self.approved_commands.is_approved(inv.command)
        return True

    def __str__(self) -> str:
        return (
            "approvals:\n"
            f"- create/edit files: {str(self.fs_changes).lower()}\n"
            f"- approved commands: {self.approved_commands}\n"
        )


class PermissionStore:
    """Owns the PermissionRecord and writes approved commands to local config."""

    def __init__(self, record: PermissionRecord, cwd: Path | None = None):
        self.record = record
        self.cwd = cwd

    @staticmethod
    def from_config(cfg: LocalConfig, cwd: Path | None) -> "PermissionStore":
        return PermissionStore(PermissionRecord(approved_commands=cfg.approved_commands), cwd=cwd)

    def is_approved(self, inv: ToolInvocation) -> bool:
        return self.record.is_approved(inv)

    def grant(self, inv: ToolInvocation) -> str | None:
        """Remember an "always allow" answer. Returns a message for the user."""
        if isinstance(inv, FILE_MUTATIONS):
            self.record.fs_changes = True
            return "will not ask for confirmation for creating/editing files from now on"
        if isinstance(inv, RunCommand):
            try:
                pattern = inv.pattern()
            except CommandPatternError:
                return None
            if self.record.approved_commands.insert(pattern):
                self.persist()
            return f'will not ask for confirmation for running "{pattern}" commands from now on'
        return None

    def persist(self) -> None:
        if self.cwd is None:
            return
        try:
            save_local_config(self.cwd, LocalConfig(approved_commands=self.record.approved_commands))
        except ConfigError as e:
            logger.exception("couldn't persist approved commands")
            console.print(f"[red]error: couldn't update local config: {escape(str(e))}[/red]")


def _approval_line(inv: ToolInvocation) -> str:
    if isinstance(inv, FILE_MUTATIONS):
        return "to allow all edits in this session"
    if isinstance(inv, RunCommand):
        try:
            return f'to always allow "{inv.pattern()}" commands'
        except CommandPatternError:
            pass
    return "to always approve this tool call"


def _render_details(inv: ToolInvocation, details: str) -> None:
    if isinstance(inv, EditFile):
        console.print(Syntax(details, "diff", theme="ansi_dark", background_color="default"))
    elif isinstance(inv, CreateFile):
        lexer = Syntax.guess_lexer(inv.path, code=details)
        console.print(Panel(Syntax(details, lexer, theme="ansi_dark", background_color="default"), title=inv.path))
    else:
        console.print(details)


async def console_prompter(text: str) -> str:
    # Runs in a thread so the event loop (and debug server) keep running.
    return await asyncio.to_thread(console.input, escape(text))


class PermissionGate:
    """Decides whether a tool invocation may run, asking the user if needed."""

    def __init__(self, store: PermissionStore, prompter: Prompter = console_prompter):
        self.store = store
        self.prompter = prompter

    async def confirm(self, inv: ToolInvocation, ctx: ToolContext) -> Confirmation:
        if not needs_confirmation(inv):
            return APPROVED
        if self.store.is_approved(inv):
            return AUTO_APPROVED

        details = await inv.details(ctx)
        console.print(f"[bright_magenta]\\[request for tool-call] {escape(inv.summary())}[/bright_magenta]")
        if details:
            _render_details(inv, details)

        prompt = (
            "\ntype:\n"
            "- y / <enter> to proceed\n"
            f"- a           {_approval_line(inv)}\n"
            "- n / no      to reject\n"
            "- reject and provide feedback: "
        )
        try:
            answer = (await self.prompter(prompt)).strip()
        except (EOFError, KeyboardInterrupt):
            return REJECTED

        if answer in ("", "y"):
            return APPROVED
        if answer == "a":
            msg = self.store.grant(inv)
            if msg:
                console.print(f"[green]{escape(msg)}[/green]")
            return AUTO_APPROVED
        if answer in ("n", "no"):
            return REJECTED
        return Confirmation(Decision.FEEDBACK, feedback=answer)
