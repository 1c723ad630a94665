# ABOUTME: Clone/edit/commit/push pipeline behind every cluster mutation
# ABOUTME: Implements template cloning, desired-state changes and profile application

"""
State-mutation pipeline for desired-state repositories.

=============================================================================
THE SKELETON
=============================================================================

Every mutation runs the same steps inside its own disposable workspace:

    acquire workspace -> clone -> open cluster.yaml -> edit
        -> unchanged?  yes: stop, nothing is written, committed or pushed
                       no:  save -> commit -> concurrency check -> push

    Cloned -> Edited -> Unchanged
                     -> Committed -> Pushed

=============================================================================
OPTIMISTIC CONCURRENCY
=============================================================================

Two requests against the same repository may race. Right before pushing, the
remote branch head is read again (git ls-remote) and compared with the commit
the edit was based on. If somebody else pushed in between, Conflict is raised
and nothing is pushed; the caller re-issues the request against the new
state. A push rejected as non-fast-forward surfaces as Conflict too. The
pipeline itself never retries.

=============================================================================
DEPENDENCIES
=============================================================================

All collaborators are injected, so tests substitute fakes for git, the
editor and GitHub:

    pipeline = ClusterPipeline(
        settings,
        vcs=GitCli(...),
        editor=YamlPathEditor(),
        workspaces=WorkspaceManager(...),
        client_factory=lambda token: GitHubClient(settings, token),
    )
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from gitops_api.errors import Conflict, NoChange, ValidationError
from gitops_api.utils.client import GitHubClient
from gitops_api.utils.editor import YamlPathEditor
from gitops_api.utils.sealing import SecretWriter
from gitops_api.utils.vcs import GitCli, with_credentials
from gitops_api.utils.workspace import WorkspaceManager

if TYPE_CHECKING:
    from pathlib import Path

    from gitops_api.config import ServiceSettings
    from gitops_api.models import (
        ClusterStateRequest,
        ClusterTemplateCloneRequest,
        ProfileApplyRequest,
        RepositoryTarget,
    )
    from gitops_api.utils.editor import DocumentEditor, YamlDocument
    from gitops_api.utils.vcs import VersionControl

logger = structlog.get_logger(__name__)

ORIGIN_REMOTE = "origin"
FORK_REMOTE = "fork"

STATE_PATH = "spec.state"
NAME_PATH = "spec.template.metadata.name"
PROFILES_PATH = "spec.profiles"

AWS_ACCESS_KEY_ID = "awsAccessKeyId"
AWS_SECRET_ACCESS_KEY = "awsSecretAccessKey"
GITHUB_TOKEN_SECRET = "githubToken"
REQUIRED_SECRETS = (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, GITHUB_TOKEN_SECRET)

ClientFactory = Callable[[str], GitHubClient]


class MutationStatus(str, Enum):
    """Terminal state of a mutation."""

    PUSHED = "pushed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class MutationOutcome:
    """Result of a mutation that did not fail."""

    operation: str
    repository: str
    status: MutationStatus
    commit: str | None = None
    message: str = ""

    @property
    def changed(self) -> bool:
        return self.status is MutationStatus.PUSHED

    def to_dict(self) -> dict[str, str | bool | None]:
        return {
            "result": self.message,
            "changed": self.changed,
            "status": self.status.value,
            "repository": self.repository,
            "commit": self.commit,
        }


class ClusterPipeline:
    """The three cluster mutations over one injected set of collaborators."""

    def __init__(
        self,
        settings: ServiceSettings,
        vcs: VersionControl | None = None,
        editor: DocumentEditor | None = None,
        workspaces: WorkspaceManager | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings
        self._vcs = vcs or GitCli(
            timeout=settings.git_timeout,
            committer_name=settings.committer_name,
            committer_email=settings.committer_email,
        )
        self._editor = editor or YamlPathEditor()
        self._workspaces = workspaces or WorkspaceManager(
            root=settings.workspace_root,
            prefix=settings.workspace_prefix,
        )
        self._client_factory = client_factory or (
            lambda token: GitHubClient(settings, token)
        )

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def clone_from_template(self, request: ClusterTemplateCloneRequest) -> MutationOutcome:
        """
        Create a new cluster repository from a template.

        Clones the template, creates the private destination repository tagged
        with the managed-cluster topic, renames the cluster and sets it to
        absent, commits, provisions the CI secrets and pushes to the new
        repository.

        Raises:
            ValidationError: A required secret is missing.
            NoChange: The template already carries the target name and state.
            Conflict: The destination exists or already has commits.
        """
        operation = "clone_from_template"
        secrets = self._template_secrets(request)
        org, name = request.target_org, request.target_repo
        log = logger.bind(operation=operation, repository=request.full_name)

        template_owner, template_name = request.template_repository.split("/", 1)
        template_url = self._authenticated_url(
            self._settings.repository_url(template_owner, template_name),
            request.github_user,
            request.token,
        )

        with self._workspaces.acquire() as workspace:
            workdir = workspace.path(template_name)
            await self._vcs.clone(template_url, workdir)
            branch = await self._vcs.current_branch(workdir)
            log.info("Template cloned", template=request.template_repository, branch=branch)

            async with self._client_factory(request.token) as client:
                repo = await client.create_repository(
                    org,
                    name,
                    private=True,
                    description=f"{name} repo",
                    topics=[self._settings.managed_topic],
                    as_org=request.github_user != org,
                )
                owner = repo.owner or org
                fork_url = repo.clone_url or self._settings.repository_url(owner, name)
                await self._vcs.add_remote(
                    workdir,
                    FORK_REMOTE,
                    self._authenticated_url(fork_url, request.github_user, request.token),
                )

                document = self._open(workdir)
                document.set_field(STATE_PATH, "absent")
                document.set_field(NAME_PATH, name)
                if not document.changed:
                    raise NoChange(
                        f"template already describes {name} in state absent",
                        operation=operation,
                    )
                document.save()
                commit = await self._vcs.commit(
                    workdir,
                    [self._settings.cluster_file],
                    f"set state to absent and change name to {name}",
                )
                log.info("Cluster specification committed", commit=commit)

                writer = SecretWriter(client)
                for secret_name, value in secrets.items():
                    await writer.write(owner, name, secret_name, value)

            await self._check_remote(workdir, FORK_REMOTE, branch, None, operation)
            await self._vcs.push(workdir, FORK_REMOTE, branch)

        log.info("Cluster repository created", commit=commit)
        return MutationOutcome(
            operation=operation,
            repository=f"{owner}/{name}",
            status=MutationStatus.PUSHED,
            commit=commit,
            message="Template cloning successfully",
        )

    async def change_cluster_state(self, request: ClusterStateRequest) -> MutationOutcome:
        """Set spec.state of an existing cluster to present or absent."""
        state = request.cluster_state
        if state not in ("present", "absent"):
            raise ValidationError(
                f"cluster state must be present or absent, got {state!r}",
                operation="change_cluster_state",
            )

        def edit(document: YamlDocument) -> None:
            document.set_field(STATE_PATH, state)

        return await self._mutate(
            request,
            "change_cluster_state",
            edit,
            commit_message=f"Changed cluster state to {state}",
            pushed_message=f"Cluster desired state changed to {state}",
            unchanged_message=f"Cluster desired state is already {state}",
        )

    async def apply_profiles(self, request: ProfileApplyRequest) -> MutationOutcome:
        """Replace spec.profiles with request.profiles, keeping their order."""
        profiles = list(request.profiles)

        def edit(document: YamlDocument) -> None:
            document.clear_sequence(PROFILES_PATH)
            for profile in profiles:
                document.append_to_sequence(PROFILES_PATH, profile)

        return await self._mutate(
            request,
            "apply_profiles",
            edit,
            commit_message="Changed profiles",
            pushed_message="Profiles applied",
            unchanged_message="Profiles already applied",
        )

    # =========================================================================
    # SKELETON
    # =========================================================================

    async def _mutate(
        self,
        request: RepositoryTarget,
        operation: str,
        edit: Callable[[YamlDocument], None],
        *,
        commit_message: str,
        pushed_message: str,
        unchanged_message: str,
    ) -> MutationOutcome:
        log = logger.bind(operation=operation, repository=request.full_name)
        url = self._authenticated_url(
            self._settings.repository_url(request.target_org, request.target_repo),
            request.github_user,
            request.token,
        )

        with self._workspaces.acquire() as workspace:
            workdir = workspace.path(request.target_repo)
            await self._vcs.clone(url, workdir)
            branch = await self._vcs.current_branch(workdir)
            base = await self._vcs.head(workdir)
            log.debug("Repository cloned", branch=branch, base=base)

            document = self._open(workdir)
            edit(document)
            if not document.changed:
                log.info("Cluster specification unchanged")
                return MutationOutcome(
                    operation=operation,
                    repository=request.full_name,
                    status=MutationStatus.UNCHANGED,
                    message=unchanged_message,
                )

            document.save()
            commit = await self._vcs.commit(workdir, [self._settings.cluster_file], commit_message)
            await self._check_remote(workdir, ORIGIN_REMOTE, branch, base, operation)
            await self._vcs.push(workdir, ORIGIN_REMOTE, branch)

        log.info("Cluster specification pushed", commit=commit)
        return MutationOutcome(
            operation=operation,
            repository=request.full_name,
            status=MutationStatus.PUSHED,
            commit=commit,
            message=pushed_message,
        )

    async def _check_remote(
        self,
        workdir: Path,
        remote: str,
        branch: str,
        expected: str | None,
        operation: str,
    ) -> None:
        """Raise Conflict when the remote branch is not where the edit started."""
        actual = await self._vcs.remote_head(workdir, remote, branch)
        if actual == expected:
            return
        logger.warning(
            "Remote branch moved",
            operation=operation,
            remote=remote,
            branch=branch,
            expected=expected,
            actual=actual,
        )
        if expected is None:
            raise Conflict(
                f"{remote}/{branch} already exists at {actual[:12]}",
                operation=operation,
            )
        seen = actual[:12] if actual else "nothing"
        raise Conflict(
            f"{remote}/{branch} moved from {expected[:12]} to {seen}, re-issue the request",
            operation=operation,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _open(self, workdir: Path) -> YamlDocument:
        return self._editor.open(workdir / self._settings.cluster_file)

    @staticmethod
    def _authenticated_url(url: str, user: str, token: str) -> str:
        return with_credentials(url, user, token)

    @staticmethod
    def _template_secrets(request: ClusterTemplateCloneRequest) -> dict[str, bytes]:
        """Secrets to provision, in upload order."""
        missing = [key for key in REQUIRED_SECRETS if key not in request.secrets]
        if missing:
            raise ValidationError(
                f"missing required secrets: {', '.join(missing)}",
                operation="clone_from_template",
            )
        return {key: request.secrets[key].get_secret_value().encode() for key in REQUIRED_SECRETS}
