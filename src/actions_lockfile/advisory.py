"""Known-vulnerability lookup for locked actions (best effort)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .client import Advisory
from .errors import GitHubAPIError
from .lockfile import Lockfile

LOG = logging.getLogger(__name__)


class AdvisorySource(Protocol):
    @property
    def token(self) -> Optional[str]: ...

    def check_action_advisories(self, action_name: str) -> List[Advisory]: ...


@dataclass(frozen=True)
class ActionAdvisory:
    action: str
    version: str
    advisories: List[Advisory]


@dataclass
class AdvisoryResult:
    checked: int = 0
    actions_with_advisories: List[ActionAdvisory] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def has_vulnerabilities(self) -> bool:
        return bool(self.actions_with_advisories)


def check_advisories(lockfile: Lockfile, client: AdvisorySource) -> AdvisoryResult:
    if not client.token:
        return AdvisoryResult(skipped_reason="no token available for GraphQL API")

    LOG.info("Checking security advisories...")
    result = AdvisoryResult()
    for name, locked in lockfile.iter_versions():
        try:
            advisories = client.check_action_advisories(name)
        except GitHubAPIError as exc:
            if "INSUFFICIENT_SCOPES" in exc.message:
                return AdvisoryResult(skipped_reason="token lacks required scopes")
            LOG.debug("Advisory lookup for %s failed: %s", name, exc.message)
            continue
        result.checked += 1
        if advisories:
            result.actions_with_advisories.append(
                ActionAdvisory(action=name, version=locked.version, advisories=advisories)
            )
    return result


def render_advisory_result(result: AdvisoryResult) -> str:
    if result.skipped_reason:
        return f"Skipping advisory check ({result.skipped_reason})"
    if result.checked == 0:
        return ""
    if not result.has_vulnerabilities:
        return f"No known vulnerabilities found ({result.checked} checked)"
    lines = ["Security advisories found:", ""]
    for entry in result.actions_with_advisories:
        for advisory in entry.advisories:
            lines.append(f"{entry.action}@{entry.version}")
            lines.append(f"    {advisory.ghsa_id} ({advisory.severity})")
            lines.append(f"    {advisory.summary}")
            lines.append(f"    {advisory.permalink}")
            lines.append("")
    lines.append(
        f"Found {len(result.actions_with_advisories)} action(s) with known vulnerabilities"
    )
    return "\n".join(lines)


__all__ = ["ActionAdvisory", "AdvisoryResult", "check_advisories", "render_advisory_result"]
