# ABOUTME: FastMCP server exposing the cluster control plane as MCP tools
# ABOUTME: Configures tools, resources and lifecycle over the shared control plane

"""gitops-api MCP server - cluster mutations and status for agents."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field, SecretStr
from pydantic import ValidationError as PydanticValidationError

from gitops_api.config import ServiceSettings, load_settings
from gitops_api.errors import GitopsError, ValidationError
from gitops_api.models import (
    ClusterState,
    ClusterStateRequest,
    ClusterTemplateCloneRequest,
    ListClustersRequest,
    ProfileApplyRequest,
    RunStatusRequest,
)
from gitops_api.service import ControlPlane
from gitops_api.utils.logging import configure_logging, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from gitops_api.pipeline import MutationOutcome

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)

# Global state (initialized in lifespan)
_settings: ServiceSettings | None = None
_control_plane: ControlPlane | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Manage server lifecycle: load config, build the control plane."""
    global _settings, _control_plane

    logger.info("Starting gitops-api MCP server")

    _settings = load_settings()
    configure_logging(level=_settings.log_level, json_output=_settings.json_logs)
    _control_plane = ControlPlane(_settings)

    yield {"settings": _settings, "control_plane": _control_plane}

    _control_plane = None
    logger.info("gitops-api MCP server stopped")


mcp = FastMCP("gitops-api", lifespan=lifespan)


def get_settings() -> ServiceSettings:
    """Get service settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_control_plane() -> ControlPlane:
    """Get the control plane all tools delegate to."""
    if not _control_plane:
        raise RuntimeError("Server not initialized")
    return _control_plane


def _credentials(params: CredentialParams) -> dict[str, Any]:
    """Caller credentials, falling back to the configured default identity."""
    settings = get_settings()
    user = params.github_user or settings.github_user
    token = params.github_token or settings.github_token.get_secret_value()
    if not user or not token:
        raise ValidationError(
            "no GitHub credentials given and no default identity configured "
            "(GITOPS_GITHUB_USER, GITOPS_GITHUB_TOKEN)",
            operation="resolve_credentials",
        )
    return {"github_user": user, "github_token": SecretStr(token)}


def _build(model: type[BaseModel], **values: Any) -> Any:
    try:
        return model(**values)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(details, operation="validate_request") from e


def _format_outcome(outcome: MutationOutcome) -> str:
    lines = [outcome.message, f"Repository: {outcome.repository}"]
    if outcome.commit:
        lines.append(f"Commit: {outcome.commit}")
    else:
        lines.append("No commit: the cluster specification already matched.")
    return "\n".join(lines)


# =============================================================================
# PARAMETERS
# =============================================================================


class CredentialParams(BaseModel):
    """Optional caller identity shared by every tool."""

    github_user: str | None = Field(
        default=None, description="GitHub user (defaults to GITOPS_GITHUB_USER)"
    )
    github_token: str | None = Field(
        default=None, description="GitHub token (defaults to GITOPS_GITHUB_TOKEN)"
    )


class ClusterParams(CredentialParams):
    """A managed cluster repository."""

    target_org: str = Field(description="Organization or user owning the cluster repository")
    target_repo: str = Field(description="Cluster repository name")


class CloneClusterTemplateParams(ClusterParams):
    """Parameters for clone_cluster_template tool."""

    template_repository: str = Field(description="Template repository as owner/name")
    aws_access_key_id: str = Field(description="AWS access key id for the reconciler")
    aws_secret_access_key: str = Field(description="AWS secret access key for the reconciler")
    ci_github_token: str | None = Field(
        default=None, description="Token stored as githubToken secret (defaults to caller token)"
    )


class SetClusterStateParams(ClusterParams):
    """Parameters for set_cluster_state tool."""

    cluster_state: ClusterState = Field(description="Desired state: present or absent")


class ApplyClusterProfilesParams(ClusterParams):
    """Parameters for apply_cluster_profiles tool."""

    profiles: list[str] = Field(default_factory=list, description="Profiles, in order")


# =============================================================================
# MUTATIONS
# =============================================================================


@mcp.tool()
async def clone_cluster_template(params: CloneClusterTemplateParams, ctx: MCPContext) -> str:
    """
    Create a new cluster repository from a template.

    Creates a private repository tagged as a managed cluster, renames the
    cluster, sets its desired state to absent, stores the CI secrets and
    pushes. The push triggers the reconciler.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    try:
        credentials = _credentials(params)
        secrets = {
            "awsAccessKeyId": params.aws_access_key_id,
            "awsSecretAccessKey": params.aws_secret_access_key,
            "githubToken": params.ci_github_token or credentials["github_token"],
        }
        request = _build(
            ClusterTemplateCloneRequest,
            template_repository=params.template_repository,
            target_org=params.target_org,
            target_repo=params.target_repo,
            secrets=secrets,
            **credentials,
        )

        await ctx.report_progress(0, 1, f"Creating {request.full_name}")
        outcome = await get_control_plane().clone_from_template(request)
        return _format_outcome(outcome)

    except GitopsError as e:
        return str(e)


@mcp.tool()
async def set_cluster_state(params: SetClusterStateParams, ctx: MCPContext) -> str:
    """
    Set the desired state of a cluster to present or absent.

    Commits and pushes only when the state actually changes.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    try:
        request = _build(
            ClusterStateRequest,
            target_org=params.target_org,
            target_repo=params.target_repo,
            cluster_state=params.cluster_state,
            **_credentials(params),
        )
        outcome = await get_control_plane().change_cluster_state(request)
        return _format_outcome(outcome)

    except GitopsError as e:
        return str(e)


@mcp.tool()
async def apply_cluster_profiles(params: ApplyClusterProfilesParams, ctx: MCPContext) -> str:
    """Replace the profile list of a cluster."""
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    try:
        request = _build(
            ProfileApplyRequest,
            target_org=params.target_org,
            target_repo=params.target_repo,
            profiles=params.profiles,
            **_credentials(params),
        )
        outcome = await get_control_plane().apply_profiles(request)
        return _format_outcome(outcome)

    except GitopsError as e:
        return str(e)


# =============================================================================
# STATUS
# =============================================================================


@mcp.tool()
async def get_cluster_run_status(params: ClusterParams, ctx: MCPContext) -> str:
    """Latest reconciler run of a cluster, with its steps."""
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    try:
        request = _build(
            RunStatusRequest,
            target_org=params.target_org,
            target_repo=params.target_repo,
            **_credentials(params),
        )
        status = await get_control_plane().run_status(request)
    except GitopsError as e:
        return str(e)

    if status is None:
        return f"No workflow run found for {params.target_org}/{params.target_repo}."

    lines = [
        f"Run: {status.link}",
        f"Status: {status.status}",
        f"Conclusion: {status.conclusion or '-'}",
        "",
        "Steps:",
    ]
    for step in status.steps:
        lines.append(f"  - {step.message}: {step.status} ({step.conclusion or '-'})")
    return "\n".join(lines)


@mcp.tool()
async def list_managed_clusters(params: CredentialParams, ctx: MCPContext) -> str:
    """List every managed cluster with the state of its latest run."""
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")

    try:
        request = _build(ListClustersRequest, **_credentials(params))
        clusters = await get_control_plane().list_clusters(request)
    except GitopsError as e:
        return str(e)

    if not clusters:
        return "No managed clusters found."

    lines = [f"Found {len(clusters)} cluster(s):", ""]
    for cluster in clusters:
        marker = "[OK]" if cluster.conclusion == "success" else "[!]"
        status = cluster.status or "no runs"
        lines.append(f"- {cluster.name} status={status} conclusion={cluster.conclusion or '-'} {marker}")
    return "\n".join(lines)


# =============================================================================
# MCP RESOURCES
# =============================================================================


@mcp.resource("gitops://settings")
async def get_settings_resource() -> str:
    """Get current service and safety settings."""
    settings = get_settings()
    safety = settings.safety

    return (
        "gitops-api Settings:\n"
        f"  GitHub API: {settings.github_api_url}\n"
        f"  Git base URL: {settings.git_base_url}\n"
        f"  Managed topic: {settings.managed_topic}\n"
        f"  Cluster file: {settings.cluster_file}\n"
        f"  Default identity: {settings.github_user or '-'}\n"
        f"  Read-only mode: {safety.read_only}\n"
        f"  Rate limit: {safety.rate_limit_calls} calls per {safety.rate_limit_window}s"
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the gitops-api MCP server."""
    configure_logging(level="INFO")
    logger.info("gitops-api MCP server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
