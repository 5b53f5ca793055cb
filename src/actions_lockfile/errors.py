"""Error taxonomy shared by the resolver, the lockfile store and the CLI."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence


class ErrorCode:
    """Stable identifiers reported alongside error messages."""

    CONFIG = "LOCK-E-CONFIG"
    WORKFLOW = "LOCK-E-WORKFLOW"
    LOCKFILE = "LOCK-E-LOCKFILE"
    LOCKFILE_MISSING = "LOCK-E-LOCKFILE-MISSING"
    GITHUB_API = "LOCK-E-GITHUB"
    NOT_FOUND = "LOCK-E-NOT-FOUND"
    RATE_LIMIT = "LOCK-E-RATE-LIMIT"
    RESOLUTION = "LOCK-E-RESOLUTION"
    MAX_DEPTH = "LOCK-E-MAX-DEPTH"


class ActionsLockfileError(RuntimeError):
    """Base error carrying a canonical code, an optional hint and context."""

    code = ErrorCode.CONFIG

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: Dict[str, str] = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value:
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class ConfigError(ActionsLockfileError):
    code = ErrorCode.CONFIG


class WorkflowError(ActionsLockfileError):
    code = ErrorCode.WORKFLOW


class LockfileError(ActionsLockfileError):
    code = ErrorCode.LOCKFILE


class LockfileNotFoundError(LockfileError):
    code = ErrorCode.LOCKFILE_MISSING


class GitHubAPIError(ActionsLockfileError):
    """Raised when a GitHub API request fails."""

    code = ErrorCode.GITHUB_API

    def __init__(
        self,
        status: int,
        message: str,
        *,
        url: Optional[str] = None,
        timeout: bool = False,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint, context={"url": url or ""})
        self.status = status
        self.timeout = timeout


class NotFoundError(GitHubAPIError):
    code = ErrorCode.NOT_FOUND


class RateLimitError(GitHubAPIError):
    code = ErrorCode.RATE_LIMIT


class ResolutionError(ActionsLockfileError):
    """Raised when a version token cannot be resolved to a commit."""

    code = ErrorCode.RESOLUTION


class MaxDepthExceededError(ResolutionError):
    """Raised when a dependency chain is deeper than the resolver allows."""

    code = ErrorCode.MAX_DEPTH

    def __init__(self, max_depth: int, chain: Sequence[str]) -> None:
        super().__init__(
            "Max dependency depth exceeded",
            hint=f"Dependency chains are limited to {max_depth} levels.",
            context={"chain": " -> ".join(chain)},
        )
        self.max_depth = max_depth
        self.chain = list(chain)


__all__ = [
    "ActionsLockfileError",
    "ConfigError",
    "ErrorCode",
    "GitHubAPIError",
    "LockfileError",
    "LockfileNotFoundError",
    "MaxDepthExceededError",
    "NotFoundError",
    "RateLimitError",
    "ResolutionError",
    "WorkflowError",
]
