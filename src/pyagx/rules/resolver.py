from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..config.models import ConfigError

logger = logging.getLogger(__name__)

AGENTS_CONTEXT_FILE = "AGENTS.md"
AGENTS_FILE_MAX_SIZE = 50 * 1024


@dataclass(frozen=True)
class ProjectContext:
    path: Path
    content: str


def load_project_context(cwd: Path) -> ProjectContext | None:
    """Read ``AGENTS.md`` from the project root, if there is one.

    A file that exists but is too large or unreadable is a configuration
    error rather than something to silently skip.
    """
    p = cwd / AGENTS_CONTEXT_FILE
    try:
        st = p.stat()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigError(f"couldn't determine metadata for {AGENTS_CONTEXT_FILE}: {e}") from e
    if not p.is_file():
        return None
    if st.st_size > AGENTS_FILE_MAX_SIZE:
        raise ConfigError(f"{AGENTS_CONTEXT_FILE} is too large; max size allowed is 50KB")
    try:
        content = p.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ConfigError(f"couldn't read {AGENTS_CONTEXT_FILE}: {e}") from e
    logger.info("loaded project context from %s (%d bytes)", p, st.st_size)
    return ProjectContext(path=p, content=content)


def combine_with_system_prompt(system_prompt: str, ctx: ProjectContext | None) -> str:
    if ctx is None or not ctx.content.strip():
        return system_prompt
    return f"{system_prompt}\n\nThe following is context specific to this project:\n\n{ctx.content}"
