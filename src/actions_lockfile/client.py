"""GitHub REST/GraphQL client used to pin and verify action references."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import yaml

from .config import Settings
from .errors import GitHubAPIError, NotFoundError, RateLimitError, ResolutionError
from .gate import RequestGate
from .manifest import Manifest, parse_manifest
from .refs import is_sha
from .telemetry import TelemetryManager, get_telemetry

LOG = logging.getLogger(__name__)

USER_AGENT = "actions-lockfile"
CHUNK_SIZE = 64 * 1024
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
MANIFEST_FILENAMES = ("action.yml", "action.yaml")
RATE_LIMIT_HINT = (
    "Set the GITHUB_TOKEN environment variable to authenticate and increase your rate limit."
)

ADVISORY_QUERY = """
query($package: String!) {
  securityVulnerabilities(ecosystem: ACTIONS, package: $package, first: 10) {
    nodes {
      advisory {
        ghsaId
        summary
        severity
        permalink
      }
      vulnerableVersionRange
    }
  }
}
"""


@dataclass(frozen=True)
class Advisory:
    ghsa_id: str
    severity: str
    summary: str
    vulnerable_version_range: str
    permalink: str


@dataclass(frozen=True)
class PRComment:
    id: int
    body: str


class GitHubClient:
    """Thin wrapper over the GitHub API; every request passes through one gate."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        gate: Optional[RequestGate] = None,
        telemetry: Optional[TelemetryManager] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.gate = gate or RequestGate(self.settings.max_concurrency)
        self._telemetry = telemetry or get_telemetry()
        self._requests = self._telemetry.counter(
            "actions_lockfile_requests_total",
            "GitHub API requests issued, by endpoint kind and HTTP status.",
            labelnames=("kind", "status"),
        )
        self._latency = self._telemetry.histogram(
            "actions_lockfile_request_seconds",
            "GitHub API request latency in seconds, by endpoint kind.",
            buckets=LATENCY_BUCKETS,
            labelnames=("kind",),
        )

    @property
    def token(self) -> Optional[str]:
        return self.settings.token

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _headers(self, *, json_body: bool = False) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json", "User-Agent": USER_AGENT}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _open(
        self,
        url: str,
        *,
        kind: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        consume: Callable[[Any], Any] = lambda response: response.read(),
    ) -> Any:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = Request(url, data=data, method=method, headers=self._headers(json_body=data is not None))
        with self.gate, self._latency.labels(kind=kind).time():
            try:
                with urlopen(request, timeout=self.settings.timeout) as response:
                    result = consume(response)
            except HTTPError as exc:
                message = exc.read().decode("utf-8", errors="ignore")
                self._requests.labels(kind=kind, status=str(exc.code)).inc()
                raise self._http_error(exc.code, message, url) from exc
            except URLError as exc:
                self._requests.labels(kind=kind, status="error").inc()
                timed_out = isinstance(exc.reason, TimeoutError)
                raise GitHubAPIError(0, f"Request failed: {exc.reason}", url=url, timeout=timed_out) from exc
            except TimeoutError as exc:
                self._requests.labels(kind=kind, status="timeout").inc()
                raise GitHubAPIError(0, f"Request timed out: {exc}", url=url, timeout=True) from exc
        self._requests.labels(kind=kind, status="200").inc()
        return result

    @staticmethod
    def _http_error(status: int, message: str, url: str) -> GitHubAPIError:
        if status == 404:
            return NotFoundError(404, "Not found", url=url)
        if status in {403, 429} and "rate limit" in message.lower():
            return RateLimitError(status, "GitHub API rate limit exceeded.", url=url, hint=RATE_LIMIT_HINT)
        return GitHubAPIError(status, f"Request failed: {status}: {message}", url=url)

    def _get_json(self, url: str, *, kind: str) -> Any:
        raw = self._open(url, kind=kind)
        try:
            return json.loads(raw.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GitHubAPIError(200, f"Invalid JSON response: {exc}", url=url) from exc

    def _repo_url(self, owner: str, repo: str, suffix: str) -> str:
        return f"{self.settings.api_url}/repos/{owner}/{repo}/{suffix}"

    # ------------------------------------------------------------------
    # Ref resolution
    # ------------------------------------------------------------------
    def resolve_ref(self, owner: str, repo: str, ref: str) -> str:
        """Resolve a tag, branch or SHA to the commit it points to."""

        if is_sha(ref):
            return ref
        strategies: List[Tuple[str, Callable[[str, str, str], str]]] = [
            ("tag", self._resolve_tag),
            ("branch", self._resolve_branch),
        ]
        timed_out = False
        for name, strategy in strategies:
            try:
                return strategy(owner, repo, ref)
            except RateLimitError:
                raise
            except GitHubAPIError as exc:
                timed_out = timed_out or exc.timeout
                LOG.debug("%s resolution of %s/%s@%s failed: %s", name, owner, repo, ref, exc.message)
        if timed_out:
            try:
                return self._resolve_commit(owner, repo, ref)
            except RateLimitError:
                raise
            except GitHubAPIError as exc:
                LOG.debug("commit resolution of %s/%s@%s failed: %s", owner, repo, ref, exc.message)
        raise ResolutionError(
            f'Could not resolve ref "{ref}" for {owner}/{repo}',
            context={"action": f"{owner}/{repo}", "ref": ref},
        )

    def _resolve_tag(self, owner: str, repo: str, tag: str) -> str:
        payload = self._get_json(self._repo_url(owner, repo, f"git/refs/tags/{quote(tag)}"), kind="ref")
        target = _ref_object(payload, f"refs/tags/{tag}")
        if target.get("type") == "tag":
            tag_obj = self._get_json(self._repo_url(owner, repo, f"git/tags/{target['sha']}"), kind="ref")
            return _ref_object(tag_obj)["sha"]
        return target["sha"]

    def _resolve_branch(self, owner: str, repo: str, branch: str) -> str:
        payload = self._get_json(self._repo_url(owner, repo, f"git/refs/heads/{quote(branch)}"), kind="ref")
        return _ref_object(payload, f"refs/heads/{branch}")["sha"]

    def _resolve_commit(self, owner: str, repo: str, ref: str) -> str:
        payload = self._get_json(self._repo_url(owner, repo, f"commits/{quote(ref, safe='')}"), kind="ref")
        sha = payload.get("sha") if isinstance(payload, dict) else None
        if not isinstance(sha, str) or not is_sha(sha):
            raise GitHubAPIError(200, "Commit response did not contain a SHA")
        return sha

    # ------------------------------------------------------------------
    # Manifests and archives
    # ------------------------------------------------------------------
    def get_manifest(
        self, owner: str, repo: str, sha: str, path: Optional[str] = None
    ) -> Optional[Manifest]:
        """Fetch the action or reusable workflow definition, or ``None``."""

        if path and path.endswith((".yml", ".yaml")):
            candidates = [path]
        else:
            candidates = [f"{path}/{name}" if path else name for name in MANIFEST_FILENAMES]
        for file_path in candidates:
            try:
                document = self._fetch_yaml(owner, repo, sha, file_path)
            except RateLimitError:
                raise
            except (GitHubAPIError, yaml.YAMLError, UnicodeDecodeError) as exc:
                LOG.debug("No manifest at %s/%s/%s@%s: %s", owner, repo, file_path, sha, exc)
                continue
            if document is not None:
                return parse_manifest(document)
        return None

    def _fetch_yaml(self, owner: str, repo: str, sha: str, file_path: str) -> Any:
        url = self._repo_url(owner, repo, f"contents/{quote(file_path)}?ref={sha}")
        content = self._get_json(url, kind="contents")
        download_url = content.get("download_url") if isinstance(content, dict) else None
        if not download_url:
            return None
        text = self._open(download_url, kind="download").decode("utf-8")
        return yaml.safe_load(text)

    def get_integrity_hash(self, owner: str, repo: str, sha: str) -> str:
        """Download the source tarball at ``sha`` and return ``sha256-<hex>``."""

        def digest(response: Any) -> str:
            hasher = hashlib.sha256()
            for chunk in iter(lambda: response.read(CHUNK_SIZE), b""):
                hasher.update(chunk)
            return hasher.hexdigest()

        hexdigest = self._open(self._repo_url(owner, repo, f"tarball/{sha}"), kind="tarball", consume=digest)
        return f"sha256-{hexdigest}"

    # ------------------------------------------------------------------
    # Advisories
    # ------------------------------------------------------------------
    def graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        raw = self._open(
            f"{self.settings.api_url}/graphql",
            kind="graphql",
            method="POST",
            body={"query": query, "variables": variables},
        )
        result = json.loads(raw.decode("utf-8"))
        errors = result.get("errors") or []
        if errors:
            raise GitHubAPIError(200, str(errors[0].get("message", errors[0])))
        data = result.get("data")
        if not isinstance(data, dict):
            raise GitHubAPIError(200, "GraphQL response missing data")
        return data

    def check_action_advisories(self, action_name: str) -> List[Advisory]:
        data = self.graphql(ADVISORY_QUERY, {"package": action_name})
        nodes = (data.get("securityVulnerabilities") or {}).get("nodes") or []
        advisories: List[Advisory] = []
        for node in nodes:
            advisory = node.get("advisory") or {}
            advisories.append(
                Advisory(
                    ghsa_id=advisory.get("ghsaId", ""),
                    severity=advisory.get("severity", ""),
                    summary=advisory.get("summary", ""),
                    vulnerable_version_range=node.get("vulnerableVersionRange", ""),
                    permalink=advisory.get("permalink", ""),
                )
            )
        return advisories

    # ------------------------------------------------------------------
    # Pull request comments
    # ------------------------------------------------------------------
    def _require_repository(self) -> Tuple[str, str]:
        owner_repo = self.settings.owner_repo
        if owner_repo is None:
            raise GitHubAPIError(0, "Repository context not available (GITHUB_REPOSITORY not set)")
        return owner_repo

    def find_pr_comment(self, pr_number: int, marker: str) -> Optional[PRComment]:
        owner, repo = self._require_repository()
        comments = self._get_json(self._repo_url(owner, repo, f"issues/{pr_number}/comments"), kind="comments")
        for comment in comments or []:
            body = comment.get("body") or ""
            if marker in body:
                return PRComment(id=int(comment["id"]), body=body)
        return None

    def create_pr_comment(self, pr_number: int, body: str) -> None:
        owner, repo = self._require_repository()
        url = self._repo_url(owner, repo, f"issues/{pr_number}/comments")
        self._open(url, kind="comments", method="POST", body={"body": body})

    def update_pr_comment(self, comment_id: int, body: str) -> None:
        owner, repo = self._require_repository()
        url = self._repo_url(owner, repo, f"issues/comments/{comment_id}")
        self._open(url, kind="comments", method="PATCH", body={"body": body})


def _ref_object(payload: Any, ref_name: Optional[str] = None) -> Dict[str, Any]:
    # a prefix match on the refs API returns a list of candidates
    if isinstance(payload, list):
        payload = next((item for item in payload if item.get("ref") == ref_name), {})
    obj = payload.get("object") if isinstance(payload, dict) else None
    if not isinstance(obj, dict) or not isinstance(obj.get("sha"), str):
        raise GitHubAPIError(200, "Ref response did not contain an object SHA")
    return obj


__all__ = ["Advisory", "GitHubClient", "PRComment"]
