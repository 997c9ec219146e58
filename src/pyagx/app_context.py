from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config.loader import load_local_config, local_config_path
from .events.bus import EventBus
from .events.server import DebugServer
from .llm.factory import resolve_provider
from .llm.openai_compat import OpenAICompatProvider
from .rules.resolver import ProjectContext, combine_with_system_prompt, load_project_context
from .runner import MAX_ROUND_TRIPS, SYSTEM_PROMPT, TurnEngine
from .session.store import TranscriptStore
from .tools.builtin import default_registry
from .tools.permissions import PermissionGate, PermissionStore

logger = logging.getLogger(__name__)


def debug_server_enabled(flag: bool) -> bool:
    return flag or os.getenv("PYAGX_DEBUG_SERVER", "") == "1"


@dataclass
class AppContext:
    cwd: Path
    provider: OpenAICompatProvider
    engine: TurnEngine
    bus: EventBus
    transcript: TranscriptStore
    project_context: ProjectContext | None = None
    debug_server: DebugServer | None = None

    async def start(self) -> None:
        if self.debug_server is not None:
            await self.debug_server.start()

    async def close(self) -> None:
        if self.debug_server is not None:
            await self.debug_server.stop()

    @staticmethod
    def from_env(
        cwd: Path,
        provider: str | None,
        model: str | None,
        base_url: str | None,
        api_key: str | None,
        *,
        config_path: Optional[Path] = None,
        max_round_trips: int = MAX_ROUND_TRIPS,
        cmd_timeout: float = 120,
        debug_server: bool = False,
        state_root: Path | None = None,
    ) -> "AppContext":
        """Build every collaborator of a session.

        Raises ConfigError when the provider registry, the local config or
        the project context cannot be loaded.
        """
        if config_path:
            config_path = config_path.expanduser().resolve()

        provider_client = resolve_provider(
            provider=provider,
            model=model,
            base_url=base_url,
            api_key=api_key,
            yaml_path=config_path,
        )

        local_cfg = load_local_config(cwd)
        logger.info(
            "loaded %d approved command(s) from %s",
            len(local_cfg.approved_commands), local_config_path(cwd),
        )
        permissions = PermissionStore.from_config(local_cfg, cwd)
        project_context = load_project_context(cwd)

        bus = EventBus()
        transcript = TranscriptStore(cwd=cwd, root=state_root)
        engine = TurnEngine(
            provider_client,
            cwd=cwd,
            permissions=permissions,
            gate=PermissionGate(permissions),
            bus=bus,
            transcript=transcript,
            registry=default_registry(),
            system_prompt=combine_with_system_prompt(SYSTEM_PROMPT, project_context),
            max_round_trips=max_round_trips,
            cmd_timeout=cmd_timeout,
        )

        return AppContext(
            cwd=cwd,
            provider=provider_client,
            engine=engine,
            bus=bus,
            transcript=transcript,
            project_context=project_context,
            debug_server=DebugServer(bus) if debug_server_enabled(debug_server) else None,
        )
