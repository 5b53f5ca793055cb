"""Lockfile model, JSON persistence and the top-level/transitive split."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from jsonschema import Draft7Validator

from .errors import LockfileError, LockfileNotFoundError
from .refs import ActionKey, parse_action_ref

LOG = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_PATH = ".github/workflows/actions.lock.json"
SCHEMA_PATH = Path(__file__).with_name("lockfile.schema.json")


def isoformat_utc(value: Optional[datetime] = None) -> str:
    value = value or datetime.now(timezone.utc).replace(microsecond=0)
    return value.isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class LockedDependency:
    ref: str
    sha: str
    integrity: str

    def to_dict(self) -> Dict[str, str]:
        return {"declaration": self.ref, "resolvedId": self.sha, "integrity": self.integrity}


@dataclass
class LockedVersion:
    version: str
    sha: str
    integrity: str = ""
    dependencies: List[LockedDependency] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "resolvedId": self.sha,
            "integrity": self.integrity,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


@dataclass
class Lockfile:
    generated: str = field(default_factory=isoformat_utc)
    actions: Dict[str, List[LockedVersion]] = field(default_factory=dict)
    version: int = SCHEMA_VERSION

    def find(self, name: str, version: str) -> Optional[LockedVersion]:
        for locked in self.actions.get(name, []):
            if locked.version == version:
                return locked
        return None

    def add(self, name: str, locked: LockedVersion) -> LockedVersion:
        """Append ``locked`` under ``name`` unless that version is already present."""

        existing = self.find(name, locked.version)
        if existing is not None:
            return existing
        self.actions.setdefault(name, []).append(locked)
        return locked

    def iter_versions(self) -> Iterator[Tuple[str, LockedVersion]]:
        for name, versions in self.actions.items():
            for locked in versions:
                yield name, locked

    def transitive_keys(self) -> Set[ActionKey]:
        """``(name, version)`` of everything some locked version depends on."""

        keys: Set[ActionKey] = set()
        for _, locked in self.iter_versions():
            for dep in locked.dependencies:
                ref = parse_action_ref(dep.ref)
                if ref is not None:
                    keys.add(ref.key)
        return keys

    def top_level(self) -> List[Tuple[str, LockedVersion]]:
        transitive = self.transitive_keys()
        return [
            (name, locked)
            for name, locked in self.iter_versions()
            if (name, locked.version) not in transitive
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.version,
            "generatedAt": self.generated,
            "entries": {
                name: [locked.to_dict() for locked in versions]
                for name, versions in self.actions.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Lockfile":
        actions: Dict[str, List[LockedVersion]] = {}
        for name, versions in payload["entries"].items():
            actions[name] = [
                LockedVersion(
                    version=item["version"],
                    sha=item["resolvedId"],
                    integrity=item["integrity"],
                    dependencies=[
                        LockedDependency(
                            ref=dep["declaration"],
                            sha=dep["resolvedId"],
                            integrity=dep["integrity"],
                        )
                        for dep in item["dependencies"]
                    ],
                )
                for item in versions
            ]
        return cls(generated=payload["generatedAt"], actions=actions, version=payload["schemaVersion"])


def _upgrade_legacy(payload: Any) -> Any:
    """Rename the keys written by earlier releases (``version``/``generated``/``actions``)."""

    if not isinstance(payload, dict) or "entries" in payload or "actions" not in payload:
        return payload
    LOG.debug("Reading lockfile written with legacy key names")
    upgraded: Dict[str, Any] = {
        key: value for key, value in payload.items() if key not in {"version", "generated", "actions"}
    }
    if "version" in payload:
        upgraded["schemaVersion"] = payload["version"]
    if "generated" in payload:
        upgraded["generatedAt"] = payload["generated"]
    actions = payload["actions"]
    if not isinstance(actions, dict):
        upgraded["entries"] = actions
        return upgraded

    def rename(item: Any, mapping: Dict[str, str]) -> Any:
        if not isinstance(item, dict):
            return item
        return {mapping.get(key, key): value for key, value in item.items()}

    entries: Dict[str, Any] = {}
    for name, versions in actions.items():
        if not isinstance(versions, list):
            entries[name] = versions
            continue
        entries[name] = []
        for item in versions:
            item = rename(item, {"sha": "resolvedId"})
            if isinstance(item, dict) and isinstance(item.get("dependencies"), list):
                item["dependencies"] = [
                    rename(dep, {"ref": "declaration", "sha": "resolvedId"})
                    for dep in item["dependencies"]
                ]
            entries[name].append(item)
    upgraded["entries"] = entries
    return upgraded


@lru_cache(maxsize=None)
def _get_validator() -> Draft7Validator:
    return Draft7Validator(json.loads(SCHEMA_PATH.read_text(encoding="utf-8")))


def serialize_lockfile(lockfile: Lockfile) -> str:
    return json.dumps(lockfile.to_dict(), indent=2) + "\n"


def parse_lockfile(raw: str) -> Lockfile:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockfileError("Invalid lockfile JSON.", hint=str(exc)) from exc
    payload = _upgrade_legacy(payload)

    errors = sorted(_get_validator().iter_errors(payload), key=lambda err: [str(part) for part in err.path])
    if errors:
        first = errors[0]
        location = "/".join(str(part) for part in first.path) or "<root>"
        raise LockfileError(
            f"Lockfile does not match the expected schema: {first.message}",
            context={"location": location},
        )
    if payload["schemaVersion"] != SCHEMA_VERSION:
        raise LockfileError(
            f"Unsupported lockfile version {payload['schemaVersion']}.",
            hint=f"This tool reads lockfile version {SCHEMA_VERSION}; regenerate the lockfile.",
        )
    try:
        parse_timestamp(payload["generatedAt"])
    except ValueError as exc:
        raise LockfileError(
            f"Invalid generatedAt timestamp: {payload['generatedAt']!r}",
            hint="Expected an ISO-8601 UTC time such as 2024-05-01T12:30:00Z.",
        ) from exc
    return Lockfile.from_dict(payload)


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileNotFoundError(
            f"Lockfile not found: {lock_path}",
            hint="Run `actions-lockfile generate` to create it.",
        ) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise LockfileError(f"Unable to read {lock_path}: {exc}") from exc
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(serialize_lockfile(lockfile), encoding="utf-8")
    return lock_path


__all__ = [
    "DEFAULT_PATH",
    "SCHEMA_VERSION",
    "LockedDependency",
    "LockedVersion",
    "Lockfile",
    "isoformat_utc",
    "parse_lockfile",
    "parse_timestamp",
    "read_lockfile",
    "serialize_lockfile",
    "write_lockfile",
]
