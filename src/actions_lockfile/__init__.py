"""Lockfile generation and verification for GitHub Actions dependencies."""

from .errors import ActionsLockfileError, MaxDepthExceededError
from .lockfile import LockedDependency, LockedVersion, Lockfile, read_lockfile, write_lockfile
from .refs import ActionRef, parse_action_ref
from .resolver import Resolver
from .verify import VerifyResult, verify
from .workflow import extract_action_refs

__version__ = "0.1.0"

__all__ = [
    "ActionRef",
    "ActionsLockfileError",
    "LockedDependency",
    "LockedVersion",
    "Lockfile",
    "MaxDepthExceededError",
    "Resolver",
    "VerifyResult",
    "extract_action_refs",
    "parse_action_ref",
    "read_lockfile",
    "verify",
    "write_lockfile",
]
