# ABOUTME: Error taxonomy shared by the pipeline, the GitHub client and both API surfaces
# ABOUTME: Every failure carries a stable kind and the name of the operation that raised it

"""
Structured errors for gitops-api.

Every failure the service can report is one of a small, fixed set of kinds.
Callers (the HTTP API, the MCP tools, tests) branch on the class or on the
``kind`` string, never on message text:

    ValidationError     -> malformed request or path expression
    WorkspaceError      -> local filesystem / git working copy failure
    RemoteUnavailable   -> network error, 5xx, or timeout talking to a remote
    AuthorizationError  -> credentials rejected by the remote
    NoChange            -> an edit produced an identical document
    Conflict            -> concurrent update (non-fast-forward push, name taken)
    SealingError        -> cryptographic precondition violated
    Blocked             -> refused by the safety guard

Example:
    try:
        await pipeline.change_cluster_state(request)
    except Conflict as e:
        # somebody else pushed first; re-issue the request
        ...
"""

from __future__ import annotations


class GitopsError(Exception):
    """Base class for all structured gitops-api errors."""

    kind = "gitops_error"

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message
        self.operation = operation
        # HTTP status from GitHub, when the error came from the REST API
        self.status_code = status_code
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message

    def to_dict(self) -> dict[str, str]:
        """Serialise for an API error body."""
        return {"error": str(self), "kind": self.kind}


class ValidationError(GitopsError):
    """Malformed request, path expression, or document shape."""

    kind = "validation_error"


class WorkspaceError(GitopsError):
    """Local filesystem or working-copy failure."""

    kind = "workspace_error"


class RemoteUnavailable(GitopsError):
    """Remote API or git remote unreachable, failing, or timed out."""

    kind = "remote_unavailable"


class AuthorizationError(GitopsError):
    """Credentials rejected by the remote."""

    kind = "authorization_error"


class NoChange(GitopsError):
    """An edit left the cluster specification structurally identical."""

    kind = "no_change"


class Conflict(GitopsError):
    """The remote moved underneath us, or the target already exists."""

    kind = "conflict"


class SealingError(GitopsError):
    """Secret sealing precondition violated (bad key, RNG failure)."""

    kind = "sealing_error"


class Blocked(GitopsError):
    """Refused by the safety guard (read-only mode, rate limit)."""

    kind = "blocked"


def error_for_status(status_code: int, message: str, operation: str) -> GitopsError:
    """
    Map an HTTP status code from GitHub onto the error taxonomy.

    401/403 are credential problems, 409/422 mean the resource is in a
    state that conflicts with the request (e.g. repository name taken),
    other 4xx are request problems and everything else is the remote's fault.
    """
    if status_code in (401, 403):
        cls: type[GitopsError] = AuthorizationError
    elif status_code in (409, 422):
        cls = Conflict
    elif 400 <= status_code < 500:
        cls = ValidationError
    else:
        cls = RemoteUnavailable
    return cls(message, operation=operation, status_code=status_code)
