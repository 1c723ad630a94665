# ABOUTME: Unit tests for workflow run status and fleet listing
# ABOUTME: Tests run/step mapping, clusters without runs and topic filtering

from unittest.mock import AsyncMock

import pytest

from gitops_api.status import ClusterStatus, StepStatus, get_run_status, list_clusters
from gitops_api.utils.client import Repository, WorkflowJob, WorkflowRun

RUN = WorkflowRun(
    id=42,
    html_url="https://github.com/acme/acme-prod/actions/runs/42",
    status="in_progress",
    conclusion=None,
)
JOB = WorkflowJob(
    id=1,
    name="reconcile",
    status="completed",
    conclusion="failure",
    steps=[
        {"name": "Set up job", "status": "completed", "conclusion": "success"},
        {"name": "Apply", "status": "in_progress", "conclusion": None},
    ],
)


def repository(full_name: str, topics: list[str]) -> Repository:
    return Repository(full_name=full_name, clone_url=f"https://github.com/{full_name}.git", topics=topics)


@pytest.mark.unit
class TestGetRunStatus:
    """Tests for get_run_status."""

    async def test_maps_run_and_steps(self, mock_github: AsyncMock):
        mock_github.latest_workflow_run.return_value = RUN
        mock_github.list_workflow_jobs.return_value = [JOB]

        status = await get_run_status(mock_github, "acme", "acme-prod")

        assert status is not None
        assert status.link == RUN.html_url
        assert status.steps == [
            StepStatus(status="completed", message="Set up job", conclusion="success"),
            StepStatus(status="in_progress", message="Apply", conclusion=""),
        ]
        mock_github.list_workflow_jobs.assert_awaited_once_with("acme", "acme-prod", 42)

    async def test_reports_job_outcome_not_run_outcome(self, mock_github: AsyncMock):
        mock_github.latest_workflow_run.return_value = RUN
        mock_github.list_workflow_jobs.return_value = [
            JOB,
            WorkflowJob(id=2, name="notify", status="queued", conclusion=None),
        ]

        status = await get_run_status(mock_github, "acme", "acme-prod")

        assert (status.status, status.conclusion) == ("completed", "failure")

    async def test_no_run(self, mock_github: AsyncMock):
        mock_github.latest_workflow_run.return_value = None

        assert await get_run_status(mock_github, "acme", "acme-prod") is None
        mock_github.list_workflow_jobs.assert_not_awaited()

    async def test_no_job(self, mock_github: AsyncMock):
        mock_github.latest_workflow_run.return_value = RUN
        mock_github.list_workflow_jobs.return_value = []

        assert await get_run_status(mock_github, "acme", "acme-prod") is None

    async def test_to_dict(self, mock_github: AsyncMock):
        mock_github.latest_workflow_run.return_value = RUN
        mock_github.list_workflow_jobs.return_value = [JOB]

        status = await get_run_status(mock_github, "acme", "acme-prod")

        assert status.to_dict()["result"][0] == {
            "status": "completed",
            "message": "Set up job",
            "conclusion": "success",
        }


@pytest.mark.unit
class TestListClusters:
    """Tests for list_clusters."""

    async def test_lists_only_tagged_repositories(self, mock_github: AsyncMock):
        mock_github.search_by_topic.return_value = [
            repository("acme/acme-prod", ["gitops-managed-cluster"]),
            repository("acme/unrelated", ["other"]),
        ]
        mock_github.latest_workflow_run.return_value = RUN
        mock_github.list_workflow_jobs.return_value = [JOB]

        clusters = await list_clusters(mock_github, "gitops-managed-cluster", 50)

        assert [c.name for c in clusters] == ["acme/acme-prod"]
        assert clusters[0].status == "completed"
        assert clusters[0].conclusion == "failure"
        assert clusters[0].link == RUN.html_url
        assert len(clusters[0].run_status) == 2
        mock_github.search_by_topic.assert_awaited_once_with("gitops-managed-cluster", 50)

    async def test_cluster_without_run_has_empty_status(self, mock_github: AsyncMock):
        mock_github.search_by_topic.return_value = [
            repository("acme/new-cluster", ["gitops-managed-cluster"]),
        ]
        mock_github.latest_workflow_run.return_value = None

        clusters = await list_clusters(mock_github, "gitops-managed-cluster")

        assert clusters == [ClusterStatus(name="acme/new-cluster")]
        assert clusters[0].to_dict() == {
            "name": "acme/new-cluster",
            "status": "",
            "conclusion": "",
            "link": "",
            "runStatus": [],
        }

    async def test_preserves_search_order(self, mock_github: AsyncMock):
        mock_github.search_by_topic.return_value = [
            repository("acme/b", ["gitops-managed-cluster"]),
            repository("acme/a", ["gitops-managed-cluster"]),
        ]
        mock_github.latest_workflow_run.return_value = None

        clusters = await list_clusters(mock_github, "gitops-managed-cluster")

        assert [c.name for c in clusters] == ["acme/b", "acme/a"]
