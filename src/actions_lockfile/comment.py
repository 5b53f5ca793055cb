"""Pull request comment describing lockfile drift."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Protocol

from .client import PRComment
from .verify import ChangeInfo, VerifyResult

LOG = logging.getLogger(__name__)

COMMENT_MARKER = "<!-- actions-lockfile-comment -->"


class CommentSink(Protocol):
    def find_pr_comment(self, pr_number: int, marker: str) -> Optional[PRComment]: ...

    def create_pr_comment(self, pr_number: int, body: str) -> None: ...

    def update_pr_comment(self, comment_id: int, body: str) -> None: ...


def get_pr_number(event_path: Optional[str]) -> Optional[int]:
    """Read the PR number from the GitHub Actions event payload."""

    if not event_path:
        return None
    try:
        event = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOG.debug("Unable to read event payload %s: %s", event_path, exc)
        return None
    if not isinstance(event, dict):
        return None
    for key in ("pull_request", "issue"):
        section = event.get(key)
        if isinstance(section, dict) and isinstance(section.get("number"), int):
            return section["number"]
    number = event.get("number")
    return number if isinstance(number, int) else None


def _repo_url(action: str) -> Optional[str]:
    parts = action.split("/")
    if len(parts) < 2:
        return None
    return f"https://github.com/{parts[0]}/{parts[1]}"


def build_commit_link(change: ChangeInfo) -> Optional[str]:
    base = _repo_url(change.action)
    if not change.old_sha or base is None:
        return None
    return f"{base}/commit/{change.old_sha}"


def build_diff_link(change: ChangeInfo) -> Optional[str]:
    base = _repo_url(change.action)
    if not change.old_sha or not change.new_sha or base is None:
        return None
    return f"{base}/compare/{change.old_sha}...{change.new_sha}"


def format_comment(result: VerifyResult) -> str:
    total = result.total_changes
    lines: List[str] = [
        COMMENT_MARKER,
        "## :lock: Actions Lockfile Mismatch",
        "",
        "The lockfile verification failed. Please run `actions-lockfile generate` to update the lockfile.",
        "",
        "<details>",
        f"<summary>View changes ({total} action{'' if total == 1 else 's'} affected)</summary>",
        "",
    ]
    if result.new_actions:
        lines.extend(["### New Actions", ""])
        lines.extend(f"- `{c.action}@{c.new_version}`" for c in result.new_actions)
        lines.append("")
    if result.changed:
        lines.extend(["### Changed Actions", ""])
        for change in result.changed:
            entry = f"- `{change.action}`: {change.old_version} -> {change.new_version}"
            link = build_diff_link(change)
            lines.append(f"{entry} ([compare]({link}))" if link else entry)
        lines.append("")
    if result.removed:
        lines.extend(["### Removed Actions", ""])
        for change in result.removed:
            entry = f"- `{change.action}@{change.old_version}`"
            link = build_commit_link(change)
            lines.append(f"{entry} ([view commit]({link}))" if link else entry)
        lines.append("")
    lines.append("</details>")
    return "\n".join(lines)


def post_or_update_comment(client: CommentSink, pr_number: int, result: VerifyResult) -> None:
    body = format_comment(result)
    existing = client.find_pr_comment(pr_number, COMMENT_MARKER)
    if existing is not None:
        client.update_pr_comment(existing.id, body)
    else:
        client.create_pr_comment(pr_number, body)


def append_step_summary(summary_path: str | Path, result: VerifyResult, reason: str) -> Path:
    """Write the drift report to the job summary when commenting is not possible."""

    path = Path(summary_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fragments: List[str] = []
    if path.exists():
        existing = path.read_text(encoding="utf-8").rstrip()
        if existing:
            fragments.append(existing)
    fragments.append(format_comment(result).strip())
    fragments.append(f"_comment_fallback_reason: {reason}_")
    path.write_text("\n\n".join(fragments) + "\n", encoding="utf-8")
    return path


__all__ = [
    "COMMENT_MARKER",
    "append_step_summary",
    "build_commit_link",
    "build_diff_link",
    "format_comment",
    "get_pr_number",
    "post_or_update_comment",
]
