# ABOUTME: Request models shared by the HTTP API, the MCP tools and the pipeline
# ABOUTME: Validates repository names, credentials, desired states and secret maps

"""
Request models.

JSON bodies use the camelCase keys of the public API (targetOrg,
gitHubToken, ...); Python code uses the snake_case field names. Both are
accepted on input (populate_by_name). Tokens and secret values are SecretStr
so they never show up in reprs or logs.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

# GitHub owner/repository name characters
NAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
FULL_NAME_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"

ClusterState = Literal["present", "absent"]


def _reject_dot_names(value: str) -> str:
    # "." and ".." resolve to the workspace itself or above it
    for part in value.split("/"):
        if not part.strip("."):
            raise ValueError(f"{part!r} is not a valid repository or owner name")
    return value


class ApiModel(BaseModel):
    """Base for request bodies."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Credentials(ApiModel):
    """Invoking GitHub identity."""

    github_user: str = Field(alias="gitHubUser", min_length=1, description="GitHub user name")
    github_token: SecretStr = Field(alias="gitHubToken", description="GitHub token")

    @field_validator("github_token")
    @classmethod
    def token_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("gitHubToken must not be empty")
        return v

    @property
    def token(self) -> str:
        return self.github_token.get_secret_value()


class RepositoryTarget(Credentials):
    """A managed cluster repository plus the caller's credentials."""

    target_org: str = Field(alias="targetOrg", pattern=NAME_PATTERN, description="Owner")
    target_repo: str = Field(alias="targetRepo", pattern=NAME_PATTERN, description="Repository")

    @field_validator("target_org", "target_repo")
    @classmethod
    def names_not_dots(cls, v: str) -> str:
        return _reject_dot_names(v)

    @property
    def full_name(self) -> str:
        return f"{self.target_org}/{self.target_repo}"


class ClusterTemplateCloneRequest(RepositoryTarget):
    """Create a new cluster repository from a template."""

    template_repository: str = Field(
        alias="templateRepository",
        pattern=FULL_NAME_PATTERN,
        description="Template repository as owner/name",
    )
    secrets: dict[str, SecretStr] = Field(
        default_factory=dict,
        description="CI secrets; must hold awsAccessKeyId, awsSecretAccessKey and githubToken",
    )

    @field_validator("template_repository")
    @classmethod
    def template_not_dots(cls, v: str) -> str:
        return _reject_dot_names(v)


class ClusterStateRequest(RepositoryTarget):
    """Change spec.state of a cluster."""

    cluster_state: ClusterState = Field(alias="clusterState", description="present or absent")


class ProfileApplyRequest(RepositoryTarget):
    """Replace spec.profiles of a cluster."""

    profiles: list[str] = Field(default_factory=list, description="Profiles in order")


class RunStatusRequest(RepositoryTarget):
    """Latest CI run of a cluster."""


class ListClustersRequest(Credentials):
    """All managed clusters visible to the caller."""
