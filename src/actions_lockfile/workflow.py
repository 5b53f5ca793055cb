"""Workflow loading and extraction of declared action references."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from .errors import WorkflowError
from .manifest import iter_job_uses
from .refs import ActionRef, parse_action_ref, should_skip

LOG = logging.getLogger(__name__)

Workflow = Dict[str, Any]
WORKFLOW_PATTERNS = ("*.yml", "*.yaml")


def load_workflow_file(path: Path) -> Optional[Workflow]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        LOG.error("Failed to read %s: %s", path, exc)
        return None
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        LOG.error("Failed to parse %s: %s", path, exc)
        return None
    if document is None:
        return {}
    if not isinstance(document, dict):
        LOG.warning("Skipping %s: workflow is not a mapping", path)
        return None
    return document


def workflow_files(directory: Path) -> List[Path]:
    files: List[Path] = []
    for pattern in WORKFLOW_PATTERNS:
        files.extend(sorted(directory.glob(pattern)))
    return files


def load_workflow_dir(directory: Path) -> List[Workflow]:
    workflows: List[Workflow] = []
    for path in workflow_files(directory):
        document = load_workflow_file(path)
        if document is not None:
            workflows.append(document)
    return workflows


def find_workflow_dir(directory: str | Path, cwd: Optional[Path] = None) -> Path:
    """Locate the workflow directory, searching upwards for ``.github/workflows``."""

    candidate = Path(directory)
    if candidate.is_absolute():
        if candidate.is_dir():
            return candidate
        raise WorkflowError(
            "Workflow directory not found.", context={"path": str(candidate)}
        )

    base = (cwd or Path.cwd()).resolve()
    if (base / candidate).is_dir():
        return base / candidate
    for current in (base, *base.parents):
        path = current / ".github" / "workflows"
        if path.is_dir():
            return path
    raise WorkflowError(
        "Workflow directory not found.",
        context={"path": str(candidate), "searched_from": str(base)},
    )


def repo_root_for(workflow_dir: Path) -> Path:
    return workflow_dir.parent.parent


def resolve_lockfile_path(output: str | Path, workflow_dir: Path) -> Path:
    """Relative lockfile paths are anchored at the repository root."""

    path = Path(output)
    if path.is_absolute():
        return path
    return repo_root_for(workflow_dir) / path


def iter_declared_uses(workflow: Workflow) -> Iterable[str]:
    return iter_job_uses(workflow.get("jobs"))


def extract_action_refs(workflows: Iterable[Workflow]) -> List[ActionRef]:
    seen: Set[str] = set()
    refs: List[ActionRef] = []
    for workflow in workflows:
        for uses in iter_declared_uses(workflow):
            if should_skip(uses) or uses in seen:
                continue
            seen.add(uses)
            ref = parse_action_ref(uses)
            if ref is not None:
                refs.append(ref)
    return refs


__all__ = [
    "Workflow",
    "extract_action_refs",
    "find_workflow_dir",
    "iter_declared_uses",
    "load_workflow_dir",
    "load_workflow_file",
    "repo_root_for",
    "resolve_lockfile_path",
    "workflow_files",
]
