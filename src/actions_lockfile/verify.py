"""Drift detection between workflow declarations and the lockfile."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .lockfile import LockedVersion, Lockfile
from .refs import parse_action_ref
from .workflow import Workflow, extract_action_refs

LOG = logging.getLogger(__name__)

CHECK_WORKERS = 10


@dataclass(frozen=True)
class ChangeInfo:
    action: str
    old_version: Optional[str] = None
    new_version: Optional[str] = None
    old_sha: Optional[str] = None
    new_sha: Optional[str] = None


@dataclass
class VerifyResult:
    new_actions: List[ChangeInfo] = field(default_factory=list)
    changed: List[ChangeInfo] = field(default_factory=list)
    removed: List[ChangeInfo] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.new_actions or self.changed or self.removed)

    @property
    def total_changes(self) -> int:
        return len(self.new_actions) + len(self.changed) + len(self.removed)


def declared_versions(workflows: Iterable[Workflow]) -> Dict[str, Set[str]]:
    """Map each action name to the set of refs currently declared for it."""

    current: Dict[str, Set[str]] = {}
    for ref in extract_action_refs(workflows):
        current.setdefault(ref.full_name, set()).add(ref.ref)
    return current


def verify(workflows: Iterable[Workflow], lockfile: Lockfile) -> VerifyResult:
    result = VerifyResult()
    current = declared_versions(workflows)

    for name, versions in current.items():
        # sets have no stable order, keep reports deterministic
        for version in sorted(versions):
            if lockfile.find(name, version) is None:
                result.new_actions.append(ChangeInfo(action=name, new_version=version))

    # only top-level entries can be removed; transitive ones follow their parent
    for name, locked in lockfile.top_level():
        if locked.version not in current.get(name, set()):
            result.removed.append(
                ChangeInfo(action=name, old_version=locked.version, old_sha=locked.sha)
            )
    return result


def render_verify_result(result: VerifyResult) -> str:
    if result.is_consistent:
        return "Lockfile is up to date"

    lines = ["Lockfile mismatch detected", ""]
    if result.new_actions:
        lines.append("New actions (not in lockfile):")
        lines.extend(f"  + {c.action}@{c.new_version}" for c in result.new_actions)
        lines.append("")
    if result.changed:
        lines.append("Changed actions:")
        lines.extend(f"  ~ {c.action}: {c.old_version} -> {c.new_version}" for c in result.changed)
        lines.append("")
    if result.removed:
        lines.append("Removed actions:")
        lines.extend(f"  - {c.action}@{c.old_version}" for c in result.removed)
        lines.append("")
    lines.append("Run 'actions-lockfile generate' to update the lockfile")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Remote checks
# ----------------------------------------------------------------------
class RefSource(Protocol):
    def resolve_ref(self, owner: str, repo: str, ref: str) -> str: ...

    def get_integrity_hash(self, owner: str, repo: str, sha: str) -> str: ...


@dataclass(frozen=True)
class ShaMismatch:
    action: str
    version: str
    lockfile_sha: str
    remote_sha: str


@dataclass(frozen=True)
class IntegrityMismatch:
    action: str
    version: str
    expected: str
    actual: str


@dataclass
class ShaCheckResult:
    checked: int = 0
    failures: List[ShaMismatch] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures


@dataclass
class IntegrityCheckResult:
    checked: int = 0
    failures: List[IntegrityMismatch] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures


def _owner_repo(name: str) -> Optional[Tuple[str, str]]:
    parts = name.split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        LOG.warning("%s - not an owner/repo action name, skipping", name)
        return None
    return parts[0], parts[1]


def _sha_targets(lockfile: Lockfile) -> List[Tuple[str, str, str]]:
    targets: List[Tuple[str, str, str]] = []
    seen: Set[Tuple[str, str, str]] = set()

    def add(target: Tuple[str, str, str]) -> None:
        if target not in seen:
            seen.add(target)
            targets.append(target)

    for name, locked in lockfile.iter_versions():
        add((name, locked.version, locked.sha))
        for dep in locked.dependencies:
            ref = parse_action_ref(dep.ref)
            if ref is not None:
                add((ref.full_name, ref.ref, dep.sha))
    return targets


def verify_shas(lockfile: Lockfile, client: RefSource) -> ShaCheckResult:
    """Re-resolve every locked ref and report those that now point elsewhere."""

    targets = _sha_targets(lockfile)
    result = ShaCheckResult()
    if not targets:
        return result
    LOG.info("Checking SHA resolution for %d action(s)...", len(targets))

    def check(target: Tuple[str, str, str]) -> Tuple[bool, Optional[ShaMismatch]]:
        name, version, sha = target
        source = _owner_repo(name)
        if source is None:
            return False, None
        owner, repo = source
        try:
            remote = client.resolve_ref(owner, repo, version)
        except Exception as exc:  # noqa: BLE001 - reported as unchecked
            LOG.warning("%s@%s - could not verify: %s", name, version, exc)
            return False, None
        if remote != sha:
            return True, ShaMismatch(action=name, version=version, lockfile_sha=sha, remote_sha=remote)
        return True, None

    with ThreadPoolExecutor(max_workers=CHECK_WORKERS) as pool:
        for checked, failure in pool.map(check, targets):
            result.checked += int(checked)
            if failure is not None:
                result.failures.append(failure)
    return result


def verify_integrity(lockfile: Lockfile, client: RefSource) -> IntegrityCheckResult:
    """Re-hash every archive that has a recorded integrity and compare."""

    targets = [(name, locked) for name, locked in lockfile.iter_versions() if locked.integrity]
    result = IntegrityCheckResult()
    if not targets:
        return result
    LOG.info("Checking integrity of %d action(s)...", len(targets))

    def check(target: Tuple[str, LockedVersion]) -> Tuple[bool, Optional[IntegrityMismatch]]:
        name, locked = target
        source = _owner_repo(name)
        if source is None:
            return False, None
        owner, repo = source
        try:
            actual = client.get_integrity_hash(owner, repo, locked.sha)
        except Exception as exc:  # noqa: BLE001 - reported as unchecked
            LOG.warning("%s@%s - could not verify: %s", name, locked.version, exc)
            return False, None
        if actual != locked.integrity:
            return True, IntegrityMismatch(
                action=name,
                version=locked.version,
                expected=locked.integrity,
                actual=actual,
            )
        return True, None

    with ThreadPoolExecutor(max_workers=CHECK_WORKERS) as pool:
        for checked, failure in pool.map(check, targets):
            result.checked += int(checked)
            if failure is not None:
                result.failures.append(failure)
    return result


def render_sha_result(result: ShaCheckResult) -> str:
    if result.checked == 0:
        return "No SHA references to verify"
    if result.passed:
        return f"All SHA checks passed ({result.checked} verified)"
    lines = ["SHA VALIDATION FAILED", ""]
    for failure in result.failures:
        lines.append(f"  {failure.action}@{failure.version}")
        lines.append(f"    Lockfile: {failure.lockfile_sha}")
        lines.append(f"    Current:  {failure.remote_sha}")
        lines.append(f"    WARNING: Tag {failure.version} has been moved!")
    return "\n".join(lines)


def render_integrity_result(result: IntegrityCheckResult) -> str:
    if result.checked == 0:
        return "No integrity hashes to verify"
    if result.passed:
        return f"All integrity checks passed ({result.checked} verified)"
    lines = ["INTEGRITY VERIFICATION FAILED", ""]
    for failure in result.failures:
        lines.append(f"  {failure.action}@{failure.version}")
        lines.append(f"    Expected: {failure.expected}")
        lines.append(f"    Got:      {failure.actual}")
    return "\n".join(lines)


__all__ = [
    "ChangeInfo",
    "IntegrityCheckResult",
    "IntegrityMismatch",
    "ShaCheckResult",
    "ShaMismatch",
    "VerifyResult",
    "declared_versions",
    "render_integrity_result",
    "render_sha_result",
    "render_verify_result",
    "verify",
    "verify_integrity",
    "verify_shas",
]
