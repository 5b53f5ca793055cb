"""Command line entry point: ``generate``, ``verify`` and ``list``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Set

from .advisory import check_advisories, render_advisory_result
from .client import GitHubClient
from .comment import append_step_summary, get_pr_number, post_or_update_comment
from .config import Settings
from .errors import ActionsLockfileError, WorkflowError
from .lockfile import DEFAULT_PATH, LockedVersion, Lockfile, parse_timestamp, read_lockfile, write_lockfile
from .refs import ActionKey, is_sha, parse_action_ref
from .resolver import Resolver
from .telemetry import TelemetrySettings, configure_telemetry
from .verify import (
    VerifyResult,
    render_integrity_result,
    render_sha_result,
    render_verify_result,
    verify,
    verify_integrity,
    verify_shas,
)
from .workflow import (
    extract_action_refs,
    find_workflow_dir,
    load_workflow_dir,
    resolve_lockfile_path,
    workflow_files,
)

LOG = logging.getLogger("actions_lockfile")

EXIT_OK = 0
EXIT_DRIFT = 1
EXIT_ERROR = 2


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


# ----------------------------------------------------------------------
# generate
# ----------------------------------------------------------------------
def cmd_generate(args: argparse.Namespace, settings: Settings) -> int:
    workflow_dir = find_workflow_dir(args.workflows)
    LOG.info("Parsing workflows from %s...", workflow_dir)
    if not workflow_files(workflow_dir):
        raise WorkflowError(f"No workflow files found in {workflow_dir}")
    workflows = load_workflow_dir(workflow_dir)
    LOG.info("Found %s", _plural(len(workflows), "workflow file", "workflow files"))

    refs = extract_action_refs(workflows)
    if not refs:
        LOG.warning("No action references found in workflows")
        return EXIT_OK
    LOG.info("Found %s", _plural(len(refs), "unique action reference", "unique action references"))

    if args.require_sha:
        unpinned = [ref for ref in refs if not is_sha(ref.ref)]
        if unpinned:
            print("ERROR: --require-sha is enabled but found non-SHA refs:", file=sys.stderr)
            for ref in unpinned:
                print(f"  x {ref.full_name}@{ref.ref}", file=sys.stderr)
            print("Use full commit SHAs for maximum security.", file=sys.stderr)
            return EXIT_DRIFT

    client = GitHubClient(settings)
    lockfile = Resolver(client).resolve_all(refs)

    output = resolve_lockfile_path(args.output, workflow_dir)
    write_lockfile(lockfile, output)
    print(f"Lockfile written to {output}")
    print(f"  {_plural(len(lockfile.actions), 'action', 'actions')} locked")
    return EXIT_OK


# ----------------------------------------------------------------------
# verify
# ----------------------------------------------------------------------
def _post_comment(client: GitHubClient, settings: Settings, result: VerifyResult) -> None:
    pr_number = get_pr_number(settings.event_path)
    if pr_number is None:
        LOG.info("Not running in PR context, skipping comment")
        return
    try:
        post_or_update_comment(client, pr_number, result)
    except ActionsLockfileError as exc:
        LOG.error("Failed to post PR comment: %s", exc.message)
        if settings.step_summary_path:
            append_step_summary(settings.step_summary_path, result, exc.message)
            LOG.info("Wrote lockfile mismatch report to the job summary instead")
        return
    LOG.info("Posted lockfile mismatch comment on PR #%d", pr_number)


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    workflow_dir = find_workflow_dir(args.workflows)
    lockfile = read_lockfile(resolve_lockfile_path(args.output, workflow_dir))
    workflows = load_workflow_dir(workflow_dir)

    print("Verifying lockfile...")
    result = verify(workflows, lockfile)
    print(render_verify_result(result))
    failed = not result.is_consistent

    client = GitHubClient(settings)
    if args.skip_sha:
        print("Skipping SHA verification (--skip-sha)")
    else:
        sha_result = verify_shas(lockfile, client)
        print(render_sha_result(sha_result))
        failed = failed or not sha_result.passed

    if args.skip_integrity:
        print("Skipping integrity verification (--skip-integrity)")
    else:
        integrity_result = verify_integrity(lockfile, client)
        print(render_integrity_result(integrity_result))
        failed = failed or not integrity_result.passed

    if args.skip_advisories:
        print("Skipping security advisory check (--skip-advisories)")
    else:
        advisory_result = check_advisories(lockfile, client)
        text = render_advisory_result(advisory_result)
        if text:
            print(text)
        failed = failed or advisory_result.has_vulnerabilities

    if failed:
        if args.comment and not result.is_consistent:
            _post_comment(client, settings, result)
        return EXIT_DRIFT
    print("Lockfile verification passed")
    return EXIT_OK


# ----------------------------------------------------------------------
# list
# ----------------------------------------------------------------------
def render_tree(lockfile: Lockfile, title: str = "actions.lock.json") -> List[str]:
    generated = parse_timestamp(lockfile.generated).strftime("%Y-%m-%d %H:%M:%S")
    lines = [f"{title} (generated {generated})", ""]

    def walk(name: str, locked: LockedVersion, prefix: str, last: bool, ancestors: Set[ActionKey]) -> None:
        lines.append(f"{prefix}{'└── ' if last else '├── '}{name}@{locked.version} ({locked.sha[:12]})")
        child_prefix = prefix + ("    " if last else "│   ")
        children = []
        for dep in locked.dependencies:
            ref = parse_action_ref(dep.ref)
            if ref is None or ref.key in ancestors:
                continue
            dep_locked = lockfile.find(ref.full_name, ref.ref)
            if dep_locked is not None:
                children.append((ref.full_name, dep_locked))
        for index, (dep_name, dep_locked) in enumerate(children):
            walk(
                dep_name,
                dep_locked,
                child_prefix,
                index == len(children) - 1,
                ancestors | {(dep_name, dep_locked.version)},
            )

    top_level = lockfile.top_level()
    for index, (name, locked) in enumerate(top_level):
        walk(name, locked, "", index == len(top_level) - 1, {(name, locked.version)})
    return lines


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    workflow_dir = find_workflow_dir(args.workflows)
    lock_path = resolve_lockfile_path(args.output, workflow_dir)
    lockfile = read_lockfile(lock_path)
    print("\n".join(render_tree(lockfile, title=Path(lock_path).name)))
    return EXIT_OK


# ----------------------------------------------------------------------
# argument parsing
# ----------------------------------------------------------------------
def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-w",
        "--workflows",
        default=".github/workflows",
        help="Path to workflows directory (default: .github/workflows)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_PATH,
        help=f"Path to lockfile (default: {DEFAULT_PATH})",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="actions-lockfile",
        description="Generate and verify a lockfile for GitHub Actions dependencies.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Generate or update the lockfile")
    _add_common(generate)
    generate.add_argument("-t", "--token", help="GitHub token (or use GITHUB_TOKEN env var)")
    generate.add_argument(
        "--require-sha",
        action="store_true",
        help="Require all action refs to be full SHAs (40 hex chars)",
    )
    generate.set_defaults(handler=cmd_generate)

    verify_parser = commands.add_parser("verify", help="Verify workflows match the lockfile")
    _add_common(verify_parser)
    verify_parser.add_argument("-t", "--token", help="GitHub token (or use GITHUB_TOKEN env var)")
    verify_parser.add_argument(
        "-c",
        "--comment",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Post a PR comment on verification failure (default: on)",
    )
    verify_parser.add_argument("--skip-sha", action="store_true", help="Skip SHA resolution verification")
    verify_parser.add_argument("--skip-integrity", action="store_true", help="Skip integrity hash verification")
    verify_parser.add_argument("--skip-advisories", action="store_true", help="Skip security advisory checking")
    verify_parser.set_defaults(handler=cmd_verify)

    list_parser = commands.add_parser("list", help="Show the locked dependency tree")
    _add_common(list_parser)
    list_parser.set_defaults(handler=cmd_list)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")

    try:
        settings = Settings.from_env().with_token(getattr(args, "token", None))
        configure_telemetry(TelemetrySettings(env=settings.env))
        return args.handler(args, settings)
    except ActionsLockfileError as exc:
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
