"""Exception hierarchy.

Every failure the CLI reports to the user derives from :class:`CcsError`.
Messages name the failing resource (path, branch, server, variable) so the
user can fix the condition and re-run; nothing here is retried.
"""

from __future__ import annotations

import enum
from pathlib import Path


class CcsError(Exception):
    """Base class for all user-facing errors."""


class ConfigError(CcsError):
    """The user configuration is malformed (raised before any external call)."""


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class GitError(CcsError):
    """A git operation or repository inspection failed."""


class NotARepositoryError(GitError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Not a git repository: {path}")


class WorktreePointerError(GitError):
    """The ``.git`` pointer file exists but its target is missing or unreadable."""

    def __init__(self, pointer_file: Path, reason: str) -> None:
        self.pointer_file = pointer_file
        self.reason = reason
        super().__init__(f"Broken worktree pointer {pointer_file}: {reason}")


class CannotCreateFromWorktreeError(GitError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(
            f"Cannot create a worktree from within a worktree ({path}). "
            "Run from the main repository."
        )


class BranchNotFoundError(GitError):
    def __init__(self, branch: str) -> None:
        self.branch = branch
        super().__init__(f"Branch '{branch}' not found. Use -b to create a new branch.")


class WorktreeConflict(CcsError):
    """Branch or target directory is already in use in an incompatible way."""

    def __init__(self, message: str, *, branch: str | None = None, path: Path | None = None):
        self.branch = branch
        self.path = path
        super().__init__(message)


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class SecretErrorKind(enum.Enum):
    BACKEND_UNAVAILABLE = "backend-unavailable"
    BACKEND_AUTH_FAILED = "backend-auth-failed"
    SECRET_NOT_FOUND = "secret-not-found"
    MALFORMED_REFERENCE = "malformed-reference"


class SecretResolutionError(CcsError):
    """A single secret reference could not be resolved.

    ``reference`` is the unresolved pointer (never a value); ``detail`` is
    backend stderr or an explanation and must not contain the secret.
    """

    def __init__(self, kind: SecretErrorKind, reference: str, detail: str) -> None:
        self.kind = kind
        self.reference = reference
        self.detail = detail
        super().__init__(f"{kind.value}: {reference}: {detail}")


class PluginConfigError(CcsError):
    """One or more MCP server definitions could not be resolved."""

    def __init__(self, failures: dict[str, dict[str, SecretResolutionError]]) -> None:
        self.failures = failures
        lines = ["Failed to resolve MCP server secrets:"]
        for server, variables in failures.items():
            for var, err in variables.items():
                lines.append(f"  - {server}.{var}: {err}")
        super().__init__("\n".join(lines))


# ---------------------------------------------------------------------------
# Credentials / runtime / sessions
# ---------------------------------------------------------------------------


class AuthDiscoveryExhausted(CcsError):
    def __init__(self, tried: list[str]) -> None:
        self.tried = tried
        super().__init__(
            "No Claude credentials found (tried: "
            + ", ".join(tried)
            + "). Run 'claude login' on the host, or set ANTHROPIC_API_KEY."
        )


class ContainerRuntimeError(CcsError):
    """No runtime is installed, or the runtime process exited non-zero."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class SessionNotFoundError(CcsError):
    pass
