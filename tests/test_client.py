from __future__ import annotations

import hashlib
import io
import json
from typing import Dict, List, Tuple, Union
from urllib.error import HTTPError, URLError

import pytest
from prometheus_client import CollectorRegistry

from actions_lockfile import client as client_module
from actions_lockfile.client import GitHubClient
from actions_lockfile.config import Settings
from actions_lockfile.errors import GitHubAPIError, NotFoundError, RateLimitError, ResolutionError
from actions_lockfile.manifest import CompositeManifest, ReusableWorkflowManifest
from actions_lockfile.telemetry import TelemetryManager

API = "https://api.github.com"
COMMIT = "c" * 40
TAG_OBJECT = "d" * 40

Reply = Union[bytes, dict, list, int, BaseException]


class FakeResponse(io.BytesIO):
    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class FakeTransport:
    """Route ``urlopen`` calls to canned replies keyed by URL."""

    def __init__(self, routes: Dict[str, Reply]) -> None:
        self.routes = routes
        self.requests: List[Tuple[str, str, Dict[str, str]]] = []

    def __call__(self, request, timeout=None):
        url = request.full_url
        self.requests.append((request.get_method(), url, dict(request.header_items())))
        reply = self.routes.get(url, 404)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, int):
            body = b"API rate limit exceeded" if reply in (403, 429) else b"{}"
            raise HTTPError(url, reply, "error", {}, io.BytesIO(body))
        if isinstance(reply, (dict, list)):
            reply = json.dumps(reply).encode("utf-8")
        return FakeResponse(reply)


@pytest.fixture
def make_client(monkeypatch):
    def factory(routes: Dict[str, Reply], **settings) -> Tuple[GitHubClient, FakeTransport]:
        transport = FakeTransport(routes)
        monkeypatch.setattr(client_module, "urlopen", transport)
        telemetry = TelemetryManager(registry=CollectorRegistry())
        github = GitHubClient(Settings(**settings), telemetry=telemetry)
        return github, transport

    return factory


def _ref(name: str, sha: str, kind: str = "commit") -> dict:
    return {"ref": name, "object": {"sha": sha, "type": kind}}


def test_sha_is_returned_without_requests(make_client) -> None:
    github, transport = make_client({})
    assert github.resolve_ref("actions", "checkout", COMMIT) == COMMIT
    assert transport.requests == []


def test_lightweight_tag(make_client) -> None:
    github, transport = make_client(
        {f"{API}/repos/actions/checkout/git/refs/tags/v4": _ref("refs/tags/v4", COMMIT)},
        token="secret",
    )
    assert github.resolve_ref("actions", "checkout", "v4") == COMMIT
    _, _, headers = transport.requests[0]
    assert headers["Authorization"] == "Bearer secret"


def test_annotated_tag_is_dereferenced(make_client) -> None:
    github, _ = make_client(
        {
            f"{API}/repos/actions/checkout/git/refs/tags/v4": _ref("refs/tags/v4", TAG_OBJECT, "tag"),
            f"{API}/repos/actions/checkout/git/tags/{TAG_OBJECT}": {"object": {"sha": COMMIT, "type": "commit"}},
        }
    )
    assert github.resolve_ref("actions", "checkout", "v4") == COMMIT


def test_prefix_match_list_picks_exact_ref(make_client) -> None:
    github, _ = make_client(
        {
            f"{API}/repos/actions/checkout/git/refs/tags/v4": [
                _ref("refs/tags/v4.1", "e" * 40),
                _ref("refs/tags/v4", COMMIT),
            ]
        }
    )
    assert github.resolve_ref("actions", "checkout", "v4") == COMMIT


def test_branch_fallback(make_client) -> None:
    github, transport = make_client(
        {f"{API}/repos/octo/tool/git/refs/heads/main": _ref("refs/heads/main", COMMIT)}
    )
    assert github.resolve_ref("octo", "tool", "main") == COMMIT
    assert [url for _, url, _ in transport.requests] == [
        f"{API}/repos/octo/tool/git/refs/tags/main",
        f"{API}/repos/octo/tool/git/refs/heads/main",
    ]


def test_unresolvable_ref(make_client) -> None:
    github, _ = make_client({})
    with pytest.raises(ResolutionError, match='Could not resolve ref "v9" for octo/tool'):
        github.resolve_ref("octo", "tool", "v9")


def test_timeouts_fall_back_to_commits_endpoint(make_client) -> None:
    timeout = URLError(TimeoutError("timed out"))
    github, _ = make_client(
        {
            f"{API}/repos/octo/tool/git/refs/tags/v1": timeout,
            f"{API}/repos/octo/tool/git/refs/heads/v1": 404,
            f"{API}/repos/octo/tool/commits/v1": {"sha": COMMIT},
        }
    )
    assert github.resolve_ref("octo", "tool", "v1") == COMMIT


def test_rate_limit_is_not_swallowed(make_client) -> None:
    github, _ = make_client({f"{API}/repos/octo/tool/git/refs/tags/v1": 403})
    with pytest.raises(RateLimitError) as excinfo:
        github.resolve_ref("octo", "tool", "v1")
    assert "GITHUB_TOKEN" in str(excinfo.value)


def test_not_found_maps_to_not_found_error(make_client) -> None:
    github, _ = make_client({})
    with pytest.raises(NotFoundError):
        github._get_json(f"{API}/repos/octo/missing", kind="repo")


def test_server_error_keeps_status(make_client) -> None:
    github, _ = make_client({f"{API}/repos/octo/tool": 500})
    with pytest.raises(GitHubAPIError) as excinfo:
        github._get_json(f"{API}/repos/octo/tool", kind="repo")
    assert excinfo.value.status == 500


def test_composite_manifest_falls_back_to_action_yaml(make_client) -> None:
    download = "https://raw.example/octo/setup/action.yaml"
    github, _ = make_client(
        {
            f"{API}/repos/octo/setup/contents/action.yaml?ref={COMMIT}": {"download_url": download},
            download: b"runs:\n  using: composite\n  steps:\n    - uses: actions/cache@v4\n",
        }
    )
    manifest = github.get_manifest("octo", "setup", COMMIT)
    assert isinstance(manifest, CompositeManifest)
    assert manifest.declared_uses() == ["actions/cache@v4"]


def test_nested_action_path(make_client) -> None:
    download = "https://raw.example/octo/mono/tools/lint/action.yml"
    github, _ = make_client(
        {
            f"{API}/repos/octo/mono/contents/tools/lint/action.yml?ref={COMMIT}": {"download_url": download},
            download: b"runs:\n  using: node20\n  main: index.js\n",
        }
    )
    manifest = github.get_manifest("octo", "mono", COMMIT, "tools/lint")
    assert manifest is not None
    assert manifest.declared_uses() == []


def test_reusable_workflow_manifest(make_client) -> None:
    path = ".github/workflows/release.yml"
    download = "https://raw.example/octo/shared/release.yml"
    github, transport = make_client(
        {
            f"{API}/repos/octo/shared/contents/{path}?ref={COMMIT}": {"download_url": download},
            download: b"jobs:\n  build:\n    steps:\n      - uses: actions/checkout@v4\n",
        }
    )
    manifest = github.get_manifest("octo", "shared", COMMIT, path)
    assert isinstance(manifest, ReusableWorkflowManifest)
    assert manifest.declared_uses() == ["actions/checkout@v4"]
    assert len(transport.requests) == 2


def test_missing_manifest_returns_none(make_client) -> None:
    github, _ = make_client({})
    assert github.get_manifest("octo", "setup", COMMIT) is None


def test_invalid_manifest_yaml_is_skipped(make_client) -> None:
    download = "https://raw.example/octo/setup/action.yml"
    github, _ = make_client(
        {
            f"{API}/repos/octo/setup/contents/action.yml?ref={COMMIT}": {"download_url": download},
            download: b"runs: [unclosed\n",
        }
    )
    assert github.get_manifest("octo", "setup", COMMIT) is None


def test_undecodable_manifest_is_skipped(make_client) -> None:
    download = "https://raw.example/octo/setup/action.yml"
    github, _ = make_client(
        {
            f"{API}/repos/octo/setup/contents/action.yml?ref={COMMIT}": {"download_url": download},
            download: b"name: \xff\xfe\nruns:\n  using: composite\n",
        }
    )
    assert github.get_manifest("octo", "setup", COMMIT) is None


def test_integrity_hash_of_tarball(make_client) -> None:
    archive = b"\x1f\x8b" + b"x" * 200_000
    github, _ = make_client({f"{API}/repos/octo/setup/tarball/{COMMIT}": archive})
    expected = "sha256-" + hashlib.sha256(archive).hexdigest()
    assert github.get_integrity_hash("octo", "setup", COMMIT) == expected


def test_integrity_hash_download_failure(make_client) -> None:
    github, _ = make_client({f"{API}/repos/octo/setup/tarball/{COMMIT}": 502})
    with pytest.raises(GitHubAPIError):
        github.get_integrity_hash("octo", "setup", COMMIT)


def test_advisories_are_parsed(make_client) -> None:
    github, transport = make_client(
        {
            f"{API}/graphql": {
                "data": {
                    "securityVulnerabilities": {
                        "nodes": [
                            {
                                "advisory": {
                                    "ghsaId": "GHSA-xxxx-yyyy-zzzz",
                                    "summary": "Command injection",
                                    "severity": "HIGH",
                                    "permalink": "https://github.com/advisories/GHSA-xxxx-yyyy-zzzz",
                                },
                                "vulnerableVersionRange": "< 2.0.0",
                            }
                        ]
                    }
                }
            }
        },
        token="secret",
    )
    advisories = github.check_action_advisories("octo/setup")
    assert [(a.ghsa_id, a.severity, a.vulnerable_version_range) for a in advisories] == [
        ("GHSA-xxxx-yyyy-zzzz", "HIGH", "< 2.0.0")
    ]
    method, _, _ = transport.requests[0]
    assert method == "POST"


def test_graphql_errors_raise(make_client) -> None:
    github, _ = make_client({f"{API}/graphql": {"errors": [{"message": "INSUFFICIENT_SCOPES"}]}})
    with pytest.raises(GitHubAPIError, match="INSUFFICIENT_SCOPES"):
        github.check_action_advisories("octo/setup")


def test_pr_comment_requires_repository(make_client) -> None:
    github, _ = make_client({})
    with pytest.raises(GitHubAPIError, match="GITHUB_REPOSITORY"):
        github.find_pr_comment(7, "<!-- marker -->")


def test_find_and_update_pr_comment(make_client) -> None:
    github, transport = make_client(
        {
            f"{API}/repos/octo/app/issues/7/comments": [
                {"id": 1, "body": "unrelated"},
                {"id": 2, "body": "<!-- marker -->\nold"},
            ],
            f"{API}/repos/octo/app/issues/comments/2": {"id": 2},
        },
        repository="octo/app",
    )
    comment = github.find_pr_comment(7, "<!-- marker -->")
    assert comment is not None and comment.id == 2
    github.update_pr_comment(comment.id, "new body")
    method, url, _ = transport.requests[-1]
    assert (method, url) == ("PATCH", f"{API}/repos/octo/app/issues/comments/2")


def test_requests_are_counted_by_kind_and_status(monkeypatch) -> None:
    registry = CollectorRegistry()
    monkeypatch.setattr(
        client_module,
        "urlopen",
        FakeTransport({f"{API}/repos/actions/checkout/git/refs/tags/v4": _ref("refs/tags/v4", COMMIT)}),
    )
    github = GitHubClient(Settings(), telemetry=TelemetryManager(registry=registry))

    github.resolve_ref("actions", "checkout", "v4")
    with pytest.raises(ResolutionError):
        github.resolve_ref("actions", "checkout", "v404")

    assert registry.get_sample_value("actions_lockfile_requests_total", {"kind": "ref", "status": "200"}) == 1.0
    assert registry.get_sample_value("actions_lockfile_requests_total", {"kind": "ref", "status": "404"}) == 2.0
    assert registry.get_sample_value("actions_lockfile_request_seconds_count", {"kind": "ref"}) == 3.0
