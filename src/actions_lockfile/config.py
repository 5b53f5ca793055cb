"""Runtime settings sourced from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .errors import ConfigError

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_TIMEOUT = 30.0


def _int_from(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigError(f"{name} must be at least 1, got {value}")
    return value


def _float_from(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    token: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    repository: Optional[str] = None
    event_path: Optional[str] = None
    step_summary_path: Optional[str] = None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    env: str = "dev"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        source = os.environ if env is None else env
        return cls(
            token=source.get("GITHUB_TOKEN") or source.get("GH_TOKEN") or None,
            api_url=(source.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
            repository=source.get("GITHUB_REPOSITORY") or None,
            event_path=source.get("GITHUB_EVENT_PATH") or None,
            step_summary_path=source.get("GITHUB_STEP_SUMMARY") or None,
            max_concurrency=_int_from(
                source, "ACTIONS_LOCKFILE_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY
            ),
            timeout=_float_from(source, "ACTIONS_LOCKFILE_TIMEOUT", DEFAULT_TIMEOUT),
            env=source.get("ACTIONS_LOCKFILE_ENV") or "dev",
        )

    def with_token(self, token: Optional[str]) -> "Settings":
        """Return a copy using ``token`` when one was passed explicitly."""

        if not token:
            return self
        return replace(self, token=token)

    @property
    def owner_repo(self) -> Optional[tuple[str, str]]:
        if not self.repository or "/" not in self.repository:
            return None
        owner, repo = self.repository.split("/", 1)
        if not owner or not repo:
            return None
        return owner, repo


__all__ = ["DEFAULT_API_URL", "Settings"]
