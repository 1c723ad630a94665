# ABOUTME: GitHub REST API client for managed cluster repositories
# ABOUTME: Provides async repository, topic, secret, search and workflow-run operations

"""
GitHub API client with bounded timeouts and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The thin façade between the control plane and GitHub. It handles:

1. HTTP COMMUNICATION: httpx.AsyncClient against the REST API
2. AUTHENTICATION: the caller's token as a Bearer header
3. ERROR HANDLING: HTTP failures mapped onto gitops_api.errors
4. RETRY LOGIC: idempotent reads retried on timeout (tenacity)

=============================================================================
ENDPOINTS USED
=============================================================================

    POST /orgs/{org}/repos                              create org repository
    POST /user/repos                                    create user repository
    PUT  /repos/{owner}/{repo}/topics                   replace topics
    GET  /repos/{owner}/{repo}/actions/secrets/public-key
    PUT  /repos/{owner}/{repo}/actions/secrets/{name}   create/update secret
    GET  /search/repositories?q=topic:...               fleet discovery
    GET  /repos/{owner}/{repo}/actions/runs             latest workflow run
    GET  /repos/{owner}/{repo}/actions/runs/{id}/jobs   jobs and steps

=============================================================================
ONE CLIENT PER REQUEST
=============================================================================

Tokens belong to callers, so a client is never shared between requests:

    async with GitHubClient(settings, token) as client:
        key = await client.get_public_key("acme", "acme-prod")

__aexit__ closes the connection pool even when the block raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gitops_api.errors import RemoteUnavailable, error_for_status
from gitops_api.utils.sealing import RepositoryPublicKey

if TYPE_CHECKING:
    from gitops_api.config import ServiceSettings

logger = structlog.get_logger(__name__)

GITHUB_MEDIA_TYPE = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


def _error_message(response: httpx.Response) -> str:
    """
    Human-readable message from a GitHub error response.

    GitHub errors look like {"message": "...", "errors": [{"message": "..."}]};
    non-JSON bodies fall back to the raw text.
    """
    message = f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return f"{message}: {response.text[:200]}" if response.text else message

    if not isinstance(body, dict):
        return message
    message = body.get("message", message)
    details = [
        item.get("message", str(item)) if isinstance(item, dict) else str(item)
        for item in body.get("errors") or []
    ]
    if details:
        message = f"{message} ({'; '.join(details)})"
    return message


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Repository:
    """The fields of a GitHub repository the control plane cares about."""

    full_name: str
    clone_url: str
    html_url: str = ""
    private: bool = True
    topics: list[str] = field(default_factory=list)

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[-1]

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Repository:
        return cls(
            full_name=data.get("full_name", ""),
            clone_url=data.get("clone_url", ""),
            html_url=data.get("html_url", ""),
            private=bool(data.get("private", True)),
            topics=list(data.get("topics") or []),
        )


@dataclass
class WorkflowRun:
    """Latest CI run of a repository."""

    id: int
    html_url: str
    status: str | None
    conclusion: str | None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> WorkflowRun:
        return cls(
            id=int(data.get("id", 0)),
            html_url=data.get("html_url", ""),
            status=data.get("status"),
            conclusion=data.get("conclusion"),
        )


@dataclass
class WorkflowJob:
    """A job of a workflow run, with its steps as raw dicts."""

    id: int
    name: str
    status: str | None
    conclusion: str | None
    steps: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> WorkflowJob:
        return cls(
            id=int(data.get("id", 0)),
            name=data.get("name", ""),
            status=data.get("status"),
            conclusion=data.get("conclusion"),
            steps=[s for s in data.get("steps") or [] if s],
        )


# =============================================================================
# GITHUB CLIENT
# =============================================================================


class GitHubClient:
    """
    Async GitHub API client.

    LIFECYCLE:
    ----------
        async with GitHubClient(settings, token) as client:
            await client.create_repository(...)

    TIMEOUTS AND RETRIES:
    ---------------------
    Every request is bounded by settings.http_timeout. A timeout or transport
    failure surfaces as RemoteUnavailable. By default nothing is retried.
    Raising settings.read_retry_attempts above 1 retries timed-out GET
    requests with exponential backoff; writes are always sent exactly once.
    """

    def __init__(self, settings: ServiceSettings, token: str) -> None:
        self._base_url = settings.github_api_url
        self._timeout = settings.http_timeout
        self._read_attempts = settings.read_retry_attempts
        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": GITHUB_MEDIA_TYPE,
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the GitHub API.

        Args:
            method: HTTP method
            path: API path (e.g., "/repos/acme/prod/topics")
            operation: Operation name carried by any raised error
            params: URL query parameters (optional)
            json_data: JSON request body (optional)

        Returns:
            Decoded JSON body, {} for empty or non-object bodies.

        Raises:
            AuthorizationError, Conflict, ValidationError, RemoteUnavailable
            RuntimeError: If client not initialized (forgot async with)
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, operation=operation)
        log.debug("Making GitHub API request")

        attempts = self._read_attempts if method == "GET" else 1
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TimeoutException),
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.request(
                        method,
                        path,
                        params=params,
                        json=json_data,
                    )
        except httpx.TimeoutException as e:
            log.warning("GitHub API timeout", timeout=self._timeout)
            raise RemoteUnavailable(
                f"GitHub API timed out after {self._timeout:g}s", operation=operation
            ) from e
        except httpx.TransportError as e:
            log.warning("GitHub API unreachable", error=str(e))
            raise RemoteUnavailable(f"GitHub API unreachable: {e}", operation=operation) from e

        if response.status_code >= 400:
            error_body = response.text
            log.warning("GitHub API error", status=response.status_code, body=error_body[:200])

            raise error_for_status(response.status_code, _error_message(response), operation)

        if not response.content:
            return {}
        result = response.json()
        return result if isinstance(result, dict) else {}

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    async def create_repository(
        self,
        owner: str,
        name: str,
        *,
        private: bool = True,
        description: str = "",
        topics: list[str] | None = None,
        as_org: bool = True,
    ) -> Repository:
        """
        Create a repository.

        Args:
            owner: Organization (as_org=True) or the authenticated user.
            name: Repository name.
            private: Create as private repository.
            description: Repository description.
            topics: Topics to apply right after creation.
            as_org: Create under /orgs/{owner} instead of the user account.

        Raises:
            Conflict: The name is already taken (422).
            AuthorizationError: The token may not create repositories there.
        """
        path = f"/orgs/{owner}/repos" if as_org else "/user/repos"
        data = await self._request(
            "POST",
            path,
            "create_repository",
            json_data={"name": name, "private": private, "description": description},
        )
        repo = Repository.from_api_response(data)
        logger.info("Repository created", repository=repo.full_name)

        if topics:
            repo.topics = await self.set_topics(repo.owner or owner, name, topics)
        return repo

    async def set_topics(self, owner: str, name: str, topics: list[str]) -> list[str]:
        """Replace the full topic set of a repository."""
        data = await self._request(
            "PUT",
            f"/repos/{owner}/{name}/topics",
            "set_topics",
            json_data={"names": topics},
        )
        applied = list(data.get("names") or topics)
        logger.info("Repository topics set", repository=f"{owner}/{name}", topics=applied)
        return applied

    async def search_by_topic(self, topic: str, limit: int = 50) -> list[Repository]:
        """Repositories tagged with topic, most recently pushed first."""
        data = await self._request(
            "GET",
            "/search/repositories",
            "search_by_topic",
            params={"q": f"topic:{topic}", "sort": "pushed", "order": "desc", "per_page": limit},
        )
        items = data.get("items") or []
        return [Repository.from_api_response(item) for item in items]

    # =========================================================================
    # ACTIONS SECRETS
    # =========================================================================

    async def get_public_key(self, owner: str, name: str) -> RepositoryPublicKey:
        """
        Current public key of the repository's Actions secret store.

        Never cache the result: the key rotates on GitHub's side.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{name}/actions/secrets/public-key",
            "get_public_key",
        )
        return RepositoryPublicKey.from_api_response(data)

    async def upload_secret(
        self,
        owner: str,
        name: str,
        secret_name: str,
        sealed_value: str,
        key_id: str,
    ) -> None:
        """
        Create or update an Actions secret.

        Raises on rejection; success says nothing about whether the secret
        existed before.
        """
        await self._request(
            "PUT",
            f"/repos/{owner}/{name}/actions/secrets/{secret_name}",
            "upload_secret",
            json_data={"encrypted_value": sealed_value, "key_id": key_id},
        )

    # =========================================================================
    # WORKFLOW RUNS
    # =========================================================================

    async def latest_workflow_run(self, owner: str, name: str) -> WorkflowRun | None:
        """Most recent workflow run, or None when the repository has none."""
        data = await self._request(
            "GET",
            f"/repos/{owner}/{name}/actions/runs",
            "latest_workflow_run",
            params={"per_page": 1},
        )
        runs = data.get("workflow_runs") or []
        if not data.get("total_count") or not runs:
            return None
        return WorkflowRun.from_api_response(runs[0])

    async def list_workflow_jobs(self, owner: str, name: str, run_id: int) -> list[WorkflowJob]:
        """Jobs of a workflow run."""
        data = await self._request(
            "GET",
            f"/repos/{owner}/{name}/actions/runs/{run_id}/jobs",
            "list_workflow_jobs",
        )
        jobs = data.get("jobs") or []
        return [WorkflowJob.from_api_response(job) for job in jobs]
