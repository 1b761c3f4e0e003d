"""Platform-aware path resolution for provider data directories.

Resolution order for every provider:

1. a caller-supplied path in ``HistoryConfig.base_paths``
2. the provider's own environment override (``CLAUDE_CONFIG_DIR``, ...)
3. the XDG data/config directory, where the tool honours one
4. the platform default

A candidate is only used if it exists on disk. The environment is captured
once in ``HistoryConfig.from_env()`` and threaded through explicitly, so the
backends never read ``os.environ`` themselves.
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_PROVIDER_TIMEOUT = 30.0

ENV_OVERRIDES = {
    "claude": "CLAUDE_CONFIG_DIR",
    "codex": "CODEX_HOME",
    "opencode": "OPENCODE_HOME",
    "cursor": "CURSOR_DATA_HOME",
}


@dataclass
class HistoryConfig:
    """Explicit configuration handed to the aggregator and providers."""

    base_paths: dict[str, Path] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    platform: str = sys.platform

    @classmethod
    def from_env(cls, base_paths: dict[str, Path] | None = None, **kwargs) -> "HistoryConfig":
        return cls(base_paths=dict(base_paths or {}), env=dict(os.environ), **kwargs)

    def base_path(self, provider: str) -> Path | None:
        return resolve_base_path(provider, self)


def _xdg_candidate(provider: str, env: Mapping[str, str]) -> Path | None:
    if provider == "opencode" and env.get("XDG_DATA_HOME"):
        return Path(env["XDG_DATA_HOME"]) / "opencode"
    if provider == "claude" and env.get("XDG_CONFIG_HOME"):
        return Path(env["XDG_CONFIG_HOME"]) / "claude"
    if provider == "cursor" and env.get("XDG_CONFIG_HOME"):
        return Path(env["XDG_CONFIG_HOME"]) / "Cursor" / "User"
    return None


def _platform_default(provider: str, config: HistoryConfig) -> Path | None:
    home = Path.home()
    if provider == "claude":
        return home / ".claude"
    if provider == "codex":
        return home / ".codex"
    if provider == "opencode":
        if config.platform == "win32":
            return Path(config.env.get("USERPROFILE", str(home))) / ".local" / "share" / "opencode"
        return home / ".local" / "share" / "opencode"
    if provider == "cursor":
        if config.platform == "darwin":
            return home / "Library" / "Application Support" / "Cursor" / "User"
        elif config.platform == "win32":
            return Path(config.env.get("APPDATA", "")) / "Cursor" / "User"
        else:  # Linux
            return home / ".config" / "Cursor" / "User"
    return None


def candidate_paths(provider: str, config: HistoryConfig) -> list[Path]:
    """All base-path candidates for ``provider`` in precedence order."""
    candidates = []
    explicit = config.base_paths.get(provider)
    if explicit is not None:
        candidates.append(Path(explicit))
    env_name = ENV_OVERRIDES.get(provider)
    if env_name and config.env.get(env_name):
        candidates.append(Path(config.env[env_name]))
    xdg = _xdg_candidate(provider, config.env)
    if xdg is not None:
        candidates.append(xdg)
    default = _platform_default(provider, config)
    if default is not None:
        candidates.append(default)
    return candidates


def resolve_base_path(provider: str, config: HistoryConfig) -> Path | None:
    """Return the first existing candidate directory, or None."""
    for candidate in candidate_paths(provider, config):
        if candidate.exists():
            return candidate
    return None
