from __future__ import annotations

import logging
from pathlib import Path

import pytest

from actions_lockfile.errors import WorkflowError
from actions_lockfile.workflow import (
    extract_action_refs,
    find_workflow_dir,
    load_workflow_dir,
    resolve_lockfile_path,
)
from tests.utils.fakes import write_workflow

CI = """
name: CI
on: push
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4
      - uses: ./.github/actions/local
      - uses: docker://alpine:3.19
      - run: make test
      - uses: actions/setup-node@v4
  reusable:
    uses: octo/shared/.github/workflows/release.yml@v1
"""

DEPLOY = """
name: Deploy
on: push
jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v4
      - uses: actions/checkout@v3
"""


def test_extracts_step_and_job_level_declarations(workflow_dir: Path) -> None:
    write_workflow(workflow_dir, "ci.yml", CI)
    refs = extract_action_refs(load_workflow_dir(workflow_dir))
    assert [ref.raw for ref in refs] == [
        "actions/checkout@v4",
        "actions/setup-node@v4",
        "octo/shared/.github/workflows/release.yml@v1",
    ]


def test_deduplicates_across_workflows_in_first_seen_order(workflow_dir: Path) -> None:
    write_workflow(workflow_dir, "a-ci.yml", CI)
    write_workflow(workflow_dir, "b-deploy.yaml", DEPLOY)
    refs = extract_action_refs(load_workflow_dir(workflow_dir))
    raws = [ref.raw for ref in refs]
    assert raws.count("actions/checkout@v4") == 1
    assert raws == [
        "actions/checkout@v4",
        "actions/setup-node@v4",
        "octo/shared/.github/workflows/release.yml@v1",
        "actions/checkout@v3",
    ]


def test_malformed_declarations_are_skipped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    workflows = [
        {"jobs": {"build": {"steps": [{"uses": "not-a-ref"}, {"uses": "actions/cache@v4"}]}}}
    ]
    with caplog.at_level(logging.WARNING):
        refs = extract_action_refs(workflows)
    assert [ref.raw for ref in refs] == ["actions/cache@v4"]
    assert "not-a-ref" in caplog.text


def test_tolerates_workflows_without_jobs_or_steps() -> None:
    workflows = [{}, {"jobs": None}, {"jobs": {"a": None, "b": {"steps": None}}}]
    assert extract_action_refs(workflows) == []


def test_invalid_yaml_is_skipped(workflow_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
    write_workflow(workflow_dir, "broken.yml", "jobs: [unclosed\n")
    write_workflow(workflow_dir, "ok.yml", DEPLOY)
    (workflow_dir / "actions.lock.json").write_text("{}", encoding="utf-8")
    with caplog.at_level(logging.ERROR):
        workflows = load_workflow_dir(workflow_dir)
    assert len(workflows) == 1
    assert "broken.yml" in caplog.text


def test_find_workflow_dir_searches_parents(tmp_path: Path) -> None:
    workflows = tmp_path / "repo" / ".github" / "workflows"
    workflows.mkdir(parents=True)
    nested = tmp_path / "repo" / "src" / "pkg"
    nested.mkdir(parents=True)
    assert find_workflow_dir(".github/workflows", cwd=nested) == workflows.resolve()


def test_find_workflow_dir_missing(tmp_path: Path) -> None:
    with pytest.raises(WorkflowError):
        find_workflow_dir(tmp_path / "nope")


def test_relative_lockfile_path_is_anchored_at_repo_root(workflow_dir: Path) -> None:
    root = workflow_dir.parent.parent
    assert resolve_lockfile_path(".github/actions.lock.json", workflow_dir) == root / ".github/actions.lock.json"
    absolute = root / "elsewhere.json"
    assert resolve_lockfile_path(absolute, workflow_dir) == absolute


def test_undecodable_workflow_is_skipped(workflow_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
    (workflow_dir / "bad.yml").write_bytes(b"jobs:\n  a:\n    steps:\n      - uses: \xff\xfe\n")
    write_workflow(workflow_dir, "ci.yml", DEPLOY)
    with caplog.at_level(logging.ERROR):
        refs = extract_action_refs(load_workflow_dir(workflow_dir))
    assert [ref.raw for ref in refs] == ["actions/checkout@v4", "actions/checkout@v3"]
    assert "Failed to read" in caplog.text
    assert "bad.yml" in caplog.text
