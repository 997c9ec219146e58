from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.create_file import CreateFile
from .builtin_tools.edit_file import EditFile
from .builtin_tools.read_file import ReadFile
from .builtin_tools.read_dir import ReadDir
from .builtin_tools.run_cmd import RunCommand

def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register(CreateFile)
    registry.register(EditFile)
    registry.register(ReadFile)
    registry.register(ReadDir)
    registry.register(RunCommand)

def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry)
    return registry
