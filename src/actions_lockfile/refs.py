"""Parsing of ``owner/repo[/path]@ref`` action declarations."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

LOG = logging.getLogger(__name__)

# owner and repo are single segments, path is optional, ref is the remainder
ACTION_REF_RE = re.compile(r"^([^/@]+)/([^/@]+)(?:/([^@]+))?@(.+)$")
HEX40_RE = re.compile(r"^[0-9a-fA-F]{40}$")
SKIP_PREFIXES = ("./", "docker://")

ActionKey = Tuple[str, str]


@dataclass(frozen=True)
class ActionRef:
    owner: str
    repo: str
    ref: str
    raw: str
    path: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.path:
            return f"{self.owner}/{self.repo}/{self.path}"
        return f"{self.owner}/{self.repo}"

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def key(self) -> ActionKey:
        """Identity of this declaration as a ``(name, version)`` pair."""

        return (self.full_name, self.ref)

    def __str__(self) -> str:
        return self.raw


def should_skip(raw: str) -> bool:
    """Local actions and container images are never locked."""

    return raw.strip().startswith(SKIP_PREFIXES)


def is_sha(token: str) -> bool:
    return bool(HEX40_RE.fullmatch(token))


def parse_action_ref(raw: str) -> Optional[ActionRef]:
    value = raw.strip()
    match = ACTION_REF_RE.match(value)
    if not match:
        LOG.warning("Invalid action reference format: %s", raw)
        return None
    owner, repo, path, ref = match.groups()
    return ActionRef(owner=owner, repo=repo, ref=ref, raw=value, path=path or None)


__all__ = [
    "ActionKey",
    "ActionRef",
    "is_sha",
    "parse_action_ref",
    "should_skip",
]
