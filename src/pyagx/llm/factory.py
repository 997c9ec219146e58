from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

from .openai_compat import OpenAICompatProvider
from ..config.models import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "pyagx.yaml"

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ConfigError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            raise ConfigError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ConfigError(f"placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config YAML not found: {p}")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p}: {e}") from e
    providers = data.get("providers") if isinstance(data, dict) else None
    if not isinstance(providers, dict) or not providers:
        raise ConfigError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()

    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ConfigError(f"providers.{name} must be a mapping/dict.")

        fields = {k: str(cfg.get(k) or "").strip() for k in ("PYAGX_BASE_URL", "PYAGX_MODEL", "PYAGX_API_KEY")}
        missing = [k for k, v in fields.items() if not v]
        if missing:
            raise ConfigError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        api_key = _expand_env_placeholders(fields["PYAGX_API_KEY"])
        reg.add(ProviderConfig(
            name=str(name),
            base_url=_expand_env_placeholders(fields["PYAGX_BASE_URL"]),
            model=fields["PYAGX_MODEL"],
            api_key=api_key,
        ))

    return reg


def resolve_provider(
    provider: Optional[str],
    model: Optional[str],
    base_url: Optional[str],
    api_key: Optional[str],
    yaml_path: Optional[Path] = None,
) -> OpenAICompatProvider:
    """
    Build the provider used for a session.

    Priority:
      - CLI overrides (model/base_url/api_key)
      - YAML (by provider name)
      - PYAGX_* environment variables when no provider name is given
    """
    if not provider:
        final = (
            model or os.getenv("PYAGX_MODEL"),
            base_url or os.getenv("PYAGX_BASE_URL"),
            api_key or os.getenv("PYAGX_API_KEY"),
        )
        if not all(final):
            raise ConfigError(
                f"Missing --provider (a name in {DEFAULT_CONFIG_FILE}) "
                "or PYAGX_MODEL / PYAGX_BASE_URL / PYAGX_API_KEY."
            )
        return OpenAICompatProvider(model=final[0], base_url=final[1], api_key=final[2], provider_name="openai")

    yaml_path = (yaml_path or Path(DEFAULT_CONFIG_FILE)).expanduser().resolve()
    logger.info("provider config: %s", yaml_path)
    reg = load_provider_registry(yaml_path)
    cfg = reg.get(provider)

    final_model = model or cfg.model
    final_base_url = base_url or cfg.base_url
    final_api_key = api_key or cfg.api_key

    if not final_model or not final_base_url or not final_api_key:
        raise ConfigError(f"Incomplete provider config for '{provider}' after overrides.")

    return OpenAICompatProvider(
        model=final_model,
        base_url=final_base_url,
        api_key=final_api_key,
        provider_name=cfg.name,
    )
