"""Parsed tool calls and the single place they are dispatched from."""
from __future__ import annotations

import json
import logging
from typing import Union

from .base import ToolContext, ToolCallParseError, ToolError
from .builtin import default_registry
from .builtin_tools.create_file import CreateFile
from .builtin_tools.edit_file import EditFile
from .builtin_tools.read_dir import ReadDir
from .builtin_tools.read_file import ReadFile
from .builtin_tools.run_cmd import RunCommand
from .registry import ToolRegistry
from ..session.models import ToolCall

logger = logging.getLogger(__name__)

ToolInvocation = Union[CreateFile, EditFile, ReadFile, ReadDir, RunCommand]

FILE_MUTATIONS = (CreateFile, EditFile)

_DEFAULT_REGISTRY = default_registry()


def parse_tool_call(call: ToolCall, registry: ToolRegistry | None = None) -> ToolInvocation:
    reg = registry or _DEFAULT_REGISTRY
    tool_cls = reg.get_optional(call.name)
    if tool_cls is None:
        raise ToolCallParseError(f"unknown tool: {call.name}")

    args = call.arguments
    if isinstance(args, str):
        try:
            args = json.loads(args) if args.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolCallParseError(f"invalid arguments: {e}") from e
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise ToolCallParseError(f"invalid arguments: expected an object, got {type(args).__name__}")
    return tool_cls.from_args(args)


def needs_confirmation(inv: ToolInvocation) -> bool:
    return type(inv).needs_confirmation


def validate(inv: ToolInvocation) -> None:
    inv.validate()


async def execute(inv: ToolInvocation, ctx: ToolContext) -> str:
    """Run ``inv`` and return the text handed back to the model.

    Tool failures become ``error: ...`` text; cancellation propagates.
    """
    try:
        out = await inv.execute(ctx)
    except ToolError as e:
        logger.info("tool %s failed: %s", inv.summary(), e)
        return f"error: {e}"
    logger.debug("tool %s ok (%d chars)", inv.summary(), len(out))
    return out
