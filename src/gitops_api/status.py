# ABOUTME: CI run status of cluster repositories and fleet listing
# ABOUTME: Reads the latest workflow run and its steps for one or all managed clusters

"""Read-only views over the reconciler's CI runs."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from gitops_api.utils.client import GitHubClient, Repository

logger = structlog.get_logger(__name__)


@dataclass
class StepStatus:
    """One step of a workflow job."""

    status: str
    message: str
    conclusion: str


@dataclass
class WorkflowRunStatus:
    """Latest workflow run of a cluster repository, with its first job's outcome."""

    link: str
    status: str
    conclusion: str
    steps: list[StepStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "conclusion": self.conclusion,
            "link": self.link,
            "result": [asdict(step) for step in self.steps],
        }


@dataclass
class ClusterStatus:
    """A managed cluster and the state of its latest run."""

    name: str
    status: str = ""
    conclusion: str = ""
    link: str = ""
    run_status: list[StepStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "conclusion": self.conclusion,
            "link": self.link,
            "runStatus": [asdict(step) for step in self.run_status],
        }


async def get_run_status(client: GitHubClient, owner: str, repo: str) -> WorkflowRunStatus | None:
    """
    Status of the latest workflow run, reported through its first job.

    The link points at the run; status, conclusion and steps are the job's.
    Returns None when the repository has no run, or the run has no job yet.
    """
    run = await client.latest_workflow_run(owner, repo)
    if run is None:
        return None
    jobs = await client.list_workflow_jobs(owner, repo, run.id)
    if not jobs:
        return None

    job = jobs[0]
    steps = [
        StepStatus(
            status=step.get("status") or "",
            message=step.get("name") or "",
            conclusion=step.get("conclusion") or "",
        )
        for step in job.steps
    ]
    return WorkflowRunStatus(
        link=run.html_url,
        status=job.status or "",
        conclusion=job.conclusion or "",
        steps=steps,
    )


async def list_clusters(client: GitHubClient, topic: str, limit: int = 50) -> list[ClusterStatus]:
    """
    Every repository tagged with topic, each with its latest run status.

    Clusters without a run yet are listed with empty status fields.
    """
    repositories = await client.search_by_topic(topic, limit)
    managed = [repo for repo in repositories if topic in repo.topics]
    logger.debug("Managed clusters found", topic=topic, count=len(managed))
    return list(await asyncio.gather(*(_cluster_status(client, repo) for repo in managed)))


async def _cluster_status(client: GitHubClient, repo: Repository) -> ClusterStatus:
    run = await get_run_status(client, repo.owner, repo.name)
    if run is None:
        return ClusterStatus(name=repo.full_name)
    return ClusterStatus(
        name=repo.full_name,
        status=run.status,
        conclusion=run.conclusion,
        link=run.link,
        run_status=run.steps,
    )
