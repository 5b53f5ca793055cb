"""Depth-first resolution of action references into a lockfile.

Every declaration is resolved once: its ref is pinned to a commit, the
archive at that commit is hashed, and the action's own manifest is read to
discover the actions it uses in turn. Dependencies are finished before the
version that declares them, so each dependency edge carries the pinned
commit and integrity of the exact version that was reached.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Protocol, Set, Tuple

from .errors import GitHubAPIError, MaxDepthExceededError, RateLimitError
from .lockfile import LockedDependency, LockedVersion, Lockfile, isoformat_utc
from .manifest import Manifest
from .refs import ActionRef, parse_action_ref, should_skip
from .telemetry import TelemetryManager, get_telemetry

LOG = logging.getLogger(__name__)

MAX_DEPTH = 10


class ActionSource(Protocol):
    def resolve_ref(self, owner: str, repo: str, ref: str) -> str: ...

    def get_manifest(
        self, owner: str, repo: str, sha: str, path: Optional[str] = None
    ) -> Optional[Manifest]: ...

    def get_integrity_hash(self, owner: str, repo: str, sha: str) -> str: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class Resolver:
    def __init__(
        self,
        client: ActionSource,
        *,
        max_depth: int = MAX_DEPTH,
        clock: Callable[[], datetime] = _utc_now,
        telemetry: Optional[TelemetryManager] = None,
        workers: int = 4,
    ) -> None:
        self.client = client
        self.max_depth = max_depth
        self._clock = clock
        self._telemetry = telemetry or get_telemetry()
        self._workers = workers
        self._lock = threading.Lock()
        self._visited: Set[str] = set()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._resolved = self._telemetry.counter(
            "actions_lockfile_resolved_total",
            "Action references resolved, by outcome.",
            labelnames=("outcome",),
        )

    def resolve_all(self, refs: Iterable[ActionRef]) -> Lockfile:
        lockfile = Lockfile(generated=isoformat_utc(self._clock()))
        with self._lock:
            self._visited = set()
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="integrity") as pool:
            self._pool = pool
            try:
                for ref in refs:
                    self._resolve(ref, lockfile, 0, ())
            finally:
                self._pool = None
        return lockfile

    def _claim(self, ref: ActionRef) -> bool:
        with self._lock:
            if ref.raw in self._visited:
                return False
            self._visited.add(ref.raw)
            return True

    def _resolve(self, ref: ActionRef, lockfile: Lockfile, depth: int, chain: Tuple[str, ...]) -> None:
        chain = (*chain, ref.raw)
        if depth > self.max_depth:
            self._resolved.labels(outcome="max_depth").inc()
            raise MaxDepthExceededError(self.max_depth, chain)
        if not self._claim(ref):
            return

        LOG.info("Resolving %s@%s...", ref.full_name, ref.ref)
        with self._telemetry.span(
            "actions_lockfile.resolve",
            attributes={"action": ref.full_name, "ref": ref.ref, "depth": depth},
        ) as span:
            try:
                sha = self.client.resolve_ref(ref.owner, ref.repo, ref.ref)
            except Exception as exc:
                self._resolved.labels(outcome="error").inc()
                self._telemetry.record_error(span, exc)
                raise
            integrity = self._submit_integrity(ref, sha)
            deps = self._find_dependencies(ref, sha)

            locked = LockedVersion(version=ref.ref, sha=sha)
            for dep in deps:
                self._resolve(dep, lockfile, depth + 1, chain)
                with self._lock:
                    dep_locked = lockfile.find(dep.full_name, dep.ref)
                if dep_locked is None:
                    # still in progress further up the chain
                    LOG.debug("No resolved entry for %s yet, skipping edge", dep.raw)
                    continue
                locked.dependencies.append(
                    LockedDependency(ref=dep.raw, sha=dep_locked.sha, integrity=dep_locked.integrity)
                )

            locked.integrity = self._integrity_result(ref, integrity)
            with self._lock:
                lockfile.add(ref.full_name, locked)
        self._resolved.labels(outcome="ok").inc()
        LOG.info("  Resolved %s@%s to %s", ref.full_name, ref.ref, sha[:12])

    def _submit_integrity(self, ref: ActionRef, sha: str) -> "Future[str]":
        assert self._pool is not None
        return self._pool.submit(self.client.get_integrity_hash, ref.owner, ref.repo, sha)

    @staticmethod
    def _integrity_result(ref: ActionRef, future: "Future[str]") -> str:
        try:
            return future.result()
        except Exception as exc:  # noqa: BLE001 - the hash is best effort
            LOG.warning("  Could not compute integrity hash for %s: %s", ref.raw, exc)
            return ""

    def _find_dependencies(self, ref: ActionRef, sha: str) -> List[ActionRef]:
        try:
            manifest = self.client.get_manifest(ref.owner, ref.repo, sha, ref.path)
        except RateLimitError:
            raise
        except GitHubAPIError as exc:
            LOG.debug("Manifest for %s unreadable: %s", ref.raw, exc)
            return []
        if manifest is None:
            return []

        deps: List[ActionRef] = []
        for uses in manifest.declared_uses():
            if should_skip(uses):
                continue
            dep = parse_action_ref(uses)
            if dep is not None:
                deps.append(dep)
        if deps:
            LOG.debug("%s (%s) declares %d dependencies", ref.raw, manifest.kind, len(deps))
        return deps


__all__ = ["MAX_DEPTH", "ActionSource", "Resolver"]
