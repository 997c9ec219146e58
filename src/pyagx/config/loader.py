from __future__ import annotations

import json
import logging
from pathlib import Path

from .models import ConfigError, LocalConfig

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".pyagx"
LOCAL_CONFIG_FILE = "config.local.json"


def local_config_path(cwd: Path) -> Path:
    return cwd / CONFIG_DIRNAME / LOCAL_CONFIG_FILE


def load_local_config(cwd: Path) -> LocalConfig:
    """Load the project's local config.

    A missing file yields defaults. Anything unreadable or malformed raises
    ConfigError rather than being ignored.
    """
    p = local_config_path(cwd)
    try:
        raw = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LocalConfig()
    except OSError as e:
        raise ConfigError(f'couldn\'t read local config file "{p}": {e}') from e

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f'couldn\'t parse local config file "{p}": {e}') from e

    try:
        cfg = LocalConfig.from_obj(obj)
    except ConfigError as e:
        raise ConfigError(f'invalid local config file "{p}": {e}') from e
    logger.debug("loaded %d approved command pattern(s) from %s", len(cfg.approved_commands), p)
    return cfg


def save_local_config(cwd: Path, cfg: LocalConfig) -> Path:
    p = local_config_path(cwd)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(cfg.to_obj(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ConfigError(f'couldn\'t write local config file "{p}": {e}') from e
    logger.info("saved %d approved command pattern(s) to %s", len(cfg.approved_commands), p)
    return p
