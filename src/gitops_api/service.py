# ABOUTME: Operation layer shared by the HTTP API and the MCP server
# ABOUTME: Applies safety checks and audit logging around pipeline and status calls

"""
The control plane's operations as both outer surfaces see them.

Each call is checked by the SafetyGuard (mutations only), executed, and
recorded in the audit log with its outcome. Errors propagate unchanged as
GitopsError subclasses; the surfaces decide how to render them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from gitops_api.errors import Blocked, GitopsError
from gitops_api.pipeline import ClusterPipeline
from gitops_api.status import get_run_status, list_clusters
from gitops_api.utils.client import GitHubClient
from gitops_api.utils.logging import AuditLogger
from gitops_api.utils.safety import SafetyGuard

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gitops_api.config import ServiceSettings
    from gitops_api.models import (
        ClusterStateRequest,
        ClusterTemplateCloneRequest,
        ListClustersRequest,
        ProfileApplyRequest,
        RepositoryTarget,
        RunStatusRequest,
    )
    from gitops_api.pipeline import ClientFactory, MutationOutcome
    from gitops_api.status import ClusterStatus, WorkflowRunStatus

logger = structlog.get_logger(__name__)

FLEET_TARGET = "fleet"


class ControlPlane:
    """Safety- and audit-wrapped cluster operations."""

    def __init__(
        self,
        settings: ServiceSettings,
        pipeline: ClusterPipeline | None = None,
        safety_guard: SafetyGuard | None = None,
        audit_logger: AuditLogger | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or (
            lambda token: GitHubClient(settings, token)
        )
        self.pipeline = pipeline or ClusterPipeline(settings, client_factory=self._client_factory)
        self.safety_guard = safety_guard or SafetyGuard(settings.safety)
        self.audit_logger = audit_logger or AuditLogger(settings.safety.audit_log)

    def client(self, token: str) -> GitHubClient:
        """A GitHub client for one request, authenticated as the caller."""
        return self._client_factory(token)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def clone_from_template(self, request: ClusterTemplateCloneRequest) -> MutationOutcome:
        return await self._mutate(
            "clone_from_template", request, lambda: self.pipeline.clone_from_template(request)
        )

    async def change_cluster_state(self, request: ClusterStateRequest) -> MutationOutcome:
        return await self._mutate(
            "change_cluster_state", request, lambda: self.pipeline.change_cluster_state(request)
        )

    async def apply_profiles(self, request: ProfileApplyRequest) -> MutationOutcome:
        return await self._mutate(
            "apply_profiles", request, lambda: self.pipeline.apply_profiles(request)
        )

    async def _mutate(
        self,
        operation: str,
        request: RepositoryTarget,
        call: Callable[[], Awaitable[MutationOutcome]],
    ) -> MutationOutcome:
        target = request.full_name
        blocked = self.safety_guard.check_mutation(operation, target)
        if blocked:
            self.audit_logger.log_blocked(operation, target, blocked.reason)
            raise Blocked(blocked.format_message(), operation=operation)

        try:
            outcome = await call()
        except GitopsError as e:
            self.audit_logger.log_error(operation, target, str(e), e.kind)
            raise

        self.audit_logger.log_write(
            operation,
            outcome.repository,
            "success" if outcome.changed else "unchanged",
            {"commit": outcome.commit} if outcome.commit else None,
        )
        return outcome

    # =========================================================================
    # STATUS
    # =========================================================================

    async def run_status(self, request: RunStatusRequest) -> WorkflowRunStatus | None:
        operation = "get_run_status"
        try:
            async with self.client(request.token) as client:
                status = await get_run_status(client, request.target_org, request.target_repo)
        except GitopsError as e:
            self.audit_logger.log_error(operation, request.full_name, str(e), e.kind)
            raise
        self.audit_logger.log_read(operation, request.full_name)
        return status

    async def list_clusters(self, request: ListClustersRequest) -> list[ClusterStatus]:
        operation = "list_clusters"
        try:
            async with self.client(request.token) as client:
                clusters = await list_clusters(
                    client, self.settings.managed_topic, self.settings.search_limit
                )
        except GitopsError as e:
            self.audit_logger.log_error(operation, FLEET_TARGET, str(e), e.kind)
            raise
        self.audit_logger.log_read(operation, FLEET_TARGET)
        logger.debug("Clusters listed", count=len(clusters))
        return clusters
