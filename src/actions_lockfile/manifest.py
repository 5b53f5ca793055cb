"""Typed view of an action's own definition file.

A dependency's manifest is either a composite action (``runs.steps``), a
reusable workflow (``jobs``) or any other action kind, which cannot declare
further dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Tuple, Union


def _str_uses(item: Any) -> Optional[str]:
    if not isinstance(item, Mapping):
        return None
    value = item.get("uses")
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def iter_step_uses(steps: Any) -> Iterator[str]:
    """Yield ``uses`` values of a step list in document order."""

    if not isinstance(steps, list):
        return
    for step in steps:
        value = _str_uses(step)
        if value is not None:
            yield value


def iter_job_uses(jobs: Any) -> Iterator[str]:
    """Yield job-level then step-level ``uses`` values for every job."""

    if not isinstance(jobs, Mapping):
        return
    for job in jobs.values():
        if not isinstance(job, Mapping):
            continue
        value = _str_uses(job)
        if value is not None:
            yield value
        yield from iter_step_uses(job.get("steps"))


@dataclass(frozen=True)
class CompositeManifest:
    steps: Tuple[str, ...] = ()
    name: Optional[str] = None
    kind: str = field(default="composite", init=False)

    def declared_uses(self) -> List[str]:
        return list(self.steps)


@dataclass(frozen=True)
class ReusableWorkflowManifest:
    uses: Tuple[str, ...] = ()
    name: Optional[str] = None
    kind: str = field(default="reusable-workflow", init=False)

    def declared_uses(self) -> List[str]:
        return list(self.uses)


@dataclass(frozen=True)
class PlainActionManifest:
    using: Optional[str] = None
    name: Optional[str] = None
    kind: str = field(default="plain", init=False)

    def declared_uses(self) -> List[str]:
        return []


Manifest = Union[CompositeManifest, ReusableWorkflowManifest, PlainActionManifest]


def parse_manifest(document: Any) -> Manifest:
    if not isinstance(document, Mapping):
        return PlainActionManifest()
    name = document.get("name") if isinstance(document.get("name"), str) else None
    runs = document.get("runs")
    if isinstance(runs, Mapping) and runs.get("using") == "composite":
        return CompositeManifest(steps=tuple(iter_step_uses(runs.get("steps"))), name=name)
    if isinstance(document.get("jobs"), Mapping):
        return ReusableWorkflowManifest(uses=tuple(iter_job_uses(document["jobs"])), name=name)
    using: Optional[str] = None
    if isinstance(runs, Mapping) and isinstance(runs.get("using"), str):
        using = runs["using"]
    return PlainActionManifest(using=using, name=name)


__all__ = [
    "CompositeManifest",
    "Manifest",
    "PlainActionManifest",
    "ReusableWorkflowManifest",
    "iter_job_uses",
    "iter_step_uses",
    "parse_manifest",
]
