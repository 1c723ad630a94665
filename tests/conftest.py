# ABOUTME: Pytest fixtures and configuration for gitops-api tests
# ABOUTME: Provides shared settings, fake collaborators and request fixtures

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from gitops_api.config import SafetySettings, ServiceSettings
from gitops_api.models import (
    ClusterStateRequest,
    ClusterTemplateCloneRequest,
    ProfileApplyRequest,
)
from gitops_api.utils.client import GitHubClient, Repository
from gitops_api.utils.safety import SafetyGuard
from gitops_api.utils.workspace import WorkspaceManager

CLUSTER_YAML = """\
# managed by gitops-api
apiVersion: gitops/v1
kind: Cluster
spec:
  state: present
  template:
    metadata:
      name: template-cluster
  profiles:
    - name: base
"""


class FakeVersionControl:
    """
    In-memory VersionControl.

    clone() writes cluster.yaml into the destination; every other call is
    recorded in `calls` so tests can assert on commits and pushes.
    """

    def __init__(
        self,
        content: str = CLUSTER_YAML,
        base: str | None = "a" * 40,
        remote_heads: dict[str, str | None] | None = None,
    ) -> None:
        self.content = content
        self.base = base
        self.remote_heads = remote_heads or {}
        self.calls: list[tuple[Any, ...]] = []
        self.commits: list[tuple[str, str]] = []
        self.cloned: list[Path] = []

    async def clone(self, url: str, dest: Path) -> None:
        self.calls.append(("clone", url))
        dest.mkdir(parents=True)
        (dest / "cluster.yaml").write_text(self.content)
        self.cloned.append(dest)

    async def current_branch(self, repo: Path) -> str:
        return "main"

    async def head(self, repo: Path) -> str | None:
        return self.base

    async def add_remote(self, repo: Path, name: str, url: str) -> None:
        self.calls.append(("add_remote", name, url))

    async def commit(self, repo: Path, paths: Sequence[str], message: str) -> str:
        sha = f"{len(self.commits) + 1:040x}"
        self.commits.append((message, (repo / "cluster.yaml").read_text()))
        self.calls.append(("commit", message))
        return sha

    async def remote_head(self, repo: Path, remote: str, branch: str) -> str | None:
        self.calls.append(("remote_head", remote, branch))
        return self.remote_heads.get(remote, self.base if remote == "origin" else None)

    async def push(self, repo: Path, remote: str, branch: str) -> None:
        self.calls.append(("push", remote, branch))

    @property
    def pushes(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == "push"]


@pytest.fixture
def safety_settings() -> SafetySettings:
    """Create permissive safety settings for testing."""
    return SafetySettings(
        read_only=False,
        rate_limit_calls=100,
        rate_limit_window=60,
        audit_log=None,
    )


@pytest.fixture
def read_only_safety_settings() -> SafetySettings:
    """Create read-only safety settings for testing."""
    return SafetySettings(read_only=True, rate_limit_calls=100, rate_limit_window=60)


@pytest.fixture
def settings(tmp_path: Path, safety_settings: SafetySettings) -> ServiceSettings:
    """Create service settings rooted in a temporary directory."""
    return ServiceSettings(
        github_api_url="https://api.github.com",
        git_base_url="https://github.com",
        github_user="",
        github_token=SecretStr(""),
        workspace_root=tmp_path,
        read_retry_attempts=1,
        safety=safety_settings,
    )


@pytest.fixture
def safety_guard(safety_settings: SafetySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(safety_settings)


@pytest.fixture
def read_only_safety_guard(read_only_safety_settings: SafetySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_safety_settings)


@pytest.fixture
def workspaces(tmp_path: Path) -> WorkspaceManager:
    """Workspace manager writing below tmp_path."""
    return WorkspaceManager(root=tmp_path)


@pytest.fixture
def vcs_factory() -> type[FakeVersionControl]:
    """The FakeVersionControl class, for tests needing custom content or remotes."""
    return FakeVersionControl


@pytest.fixture
def fake_vcs() -> FakeVersionControl:
    """In-memory git replacement."""
    return FakeVersionControl()


@pytest.fixture
def mock_github() -> AsyncMock:
    """GitHubClient mock usable as an async context manager."""
    client = AsyncMock(spec=GitHubClient)
    client.__aenter__.return_value = client
    client.__aexit__.return_value = None
    client.create_repository.return_value = Repository(
        full_name="acme/acme-prod",
        clone_url="https://github.com/acme/acme-prod.git",
        html_url="https://github.com/acme/acme-prod",
        topics=["gitops-managed-cluster"],
    )
    return client


@pytest.fixture
def clone_request() -> ClusterTemplateCloneRequest:
    """A valid clone-from-template request."""
    return ClusterTemplateCloneRequest(
        templateRepository="acme/cluster-template",
        targetOrg="acme",
        targetRepo="acme-prod",
        gitHubUser="octocat",
        gitHubToken="ghp_callertoken",
        secrets={
            "awsAccessKeyId": "AKIAEXAMPLE",
            "awsSecretAccessKey": "s3cr3t",
            "githubToken": "ghp_ci",
        },
    )


@pytest.fixture
def state_request() -> ClusterStateRequest:
    """A request setting acme/acme-prod to absent."""
    return ClusterStateRequest(
        targetOrg="acme",
        targetRepo="acme-prod",
        gitHubUser="octocat",
        gitHubToken="ghp_callertoken",
        clusterState="absent",
    )


@pytest.fixture
def profiles_request() -> ProfileApplyRequest:
    """A request applying two profiles to acme/acme-prod."""
    return ProfileApplyRequest(
        targetOrg="acme",
        targetRepo="acme-prod",
        gitHubUser="octocat",
        gitHubToken="ghp_callertoken",
        profiles=["name: monitoring", "name: logging"],
    )
