# ABOUTME: Unit tests for the GitHub API client
# ABOUTME: Tests request handling, error mapping, retries and response parsing

import base64
import json

import httpx
import pytest
import respx

from gitops_api.config import ServiceSettings
from gitops_api.errors import (
    AuthorizationError,
    Conflict,
    RemoteUnavailable,
    SealingError,
    ValidationError,
)
from gitops_api.utils.client import GitHubClient, Repository, WorkflowJob, WorkflowRun

BASE_URL = "https://api.github.com"

REPO_PAYLOAD = {
    "full_name": "acme/acme-prod",
    "clone_url": "https://github.com/acme/acme-prod.git",
    "html_url": "https://github.com/acme/acme-prod",
    "private": True,
    "topics": [],
}


@pytest.mark.unit
class TestDataClasses:
    """Tests for API response parsing."""

    def test_repository_from_api_response(self):
        repo = Repository.from_api_response({**REPO_PAYLOAD, "topics": ["gitops-managed-cluster"]})

        assert repo.owner == "acme"
        assert repo.name == "acme-prod"
        assert repo.clone_url == "https://github.com/acme/acme-prod.git"
        assert repo.topics == ["gitops-managed-cluster"]

    def test_workflow_run_defaults(self):
        run = WorkflowRun.from_api_response({"id": 7})

        assert run.id == 7
        assert run.status is None
        assert run.conclusion is None

    def test_workflow_job_skips_empty_steps(self):
        job = WorkflowJob.from_api_response({"id": 1, "name": "apply", "steps": [{"name": "a"}, None]})

        assert job.steps == [{"name": "a"}]


@pytest.mark.unit
class TestGitHubClientContextManager:
    """Tests for GitHubClient lifecycle."""

    async def test_context_manager_creates_and_closes_client(self, settings: ServiceSettings):
        client = GitHubClient(settings, "ghp_abc")
        assert client._client is None

        async with client as c:
            assert c is client
            assert isinstance(client._client, httpx.AsyncClient)
            assert client._client.headers["Authorization"] == "Bearer ghp_abc"

        assert client._client is None

    async def test_request_without_context_manager(self, settings: ServiceSettings):
        with pytest.raises(RuntimeError, match="not initialized"):
            await GitHubClient(settings, "t")._request("GET", "/user", "get_user")


@pytest.mark.unit
class TestGitHubClientRequest:
    """Tests for GitHubClient._request error handling."""

    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (401, AuthorizationError),
            (403, AuthorizationError),
            (404, ValidationError),
            (422, Conflict),
            (500, RemoteUnavailable),
        ],
    )
    @respx.mock
    async def test_status_mapping(self, settings: ServiceSettings, status: int, error: type):
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/runs").mock(
            return_value=httpx.Response(status, json={"message": "nope"})
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(error) as exc_info:
                await client.latest_workflow_run("acme", "acme-prod")

        assert exc_info.value.status_code == status
        assert exc_info.value.operation == "latest_workflow_run"

    @respx.mock
    async def test_error_details_are_included(self, settings: ServiceSettings):
        respx.post(f"{BASE_URL}/orgs/acme/repos").mock(
            return_value=httpx.Response(
                422,
                json={
                    "message": "Repository creation failed.",
                    "errors": [{"message": "name already exists on this account"}],
                },
            )
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(Conflict, match="name already exists"):
                await client.create_repository("acme", "acme-prod")

    @respx.mock
    async def test_non_json_error_body(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/search/repositories").mock(
            return_value=httpx.Response(502, text="Bad Gateway")
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(RemoteUnavailable, match="Bad Gateway"):
                await client.search_by_topic("gitops-managed-cluster")

    @respx.mock
    async def test_transport_error(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/search/repositories").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(RemoteUnavailable, match="unreachable"):
                await client.search_by_topic("gitops-managed-cluster")

    @respx.mock
    async def test_timeout_is_remote_unavailable(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/search/repositories").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(RemoteUnavailable, match="timed out"):
                await client.search_by_topic("gitops-managed-cluster")

    @respx.mock
    async def test_reads_are_retried_on_timeout(self, settings: ServiceSettings):
        settings.read_retry_attempts = 2
        route = respx.get(f"{BASE_URL}/search/repositories").mock(
            side_effect=[
                httpx.ReadTimeout("timed out"),
                httpx.Response(200, json={"items": []}),
            ]
        )

        async with GitHubClient(settings, "t") as client:
            assert await client.search_by_topic("gitops-managed-cluster") == []

        assert route.call_count == 2

    @respx.mock
    async def test_reads_are_not_retried_by_default(self):
        route = respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/secrets/public-key").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        async with GitHubClient(ServiceSettings(), "t") as client:
            with pytest.raises(RemoteUnavailable):
                await client.get_public_key("acme", "acme-prod")

        assert route.call_count == 1

    @respx.mock
    async def test_writes_are_not_retried(self, settings: ServiceSettings):
        settings.read_retry_attempts = 3
        route = respx.put(f"{BASE_URL}/repos/acme/acme-prod/topics").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(RemoteUnavailable):
                await client.set_topics("acme", "acme-prod", ["x"])

        assert route.call_count == 1


@pytest.mark.unit
class TestRepositories:
    """Tests for repository creation, topics and search."""

    @respx.mock
    async def test_create_org_repository(self, settings: ServiceSettings):
        create = respx.post(f"{BASE_URL}/orgs/acme/repos").mock(
            return_value=httpx.Response(201, json=REPO_PAYLOAD)
        )
        topics = respx.put(f"{BASE_URL}/repos/acme/acme-prod/topics").mock(
            return_value=httpx.Response(200, json={"names": ["gitops-managed-cluster"]})
        )

        async with GitHubClient(settings, "t") as client:
            repo = await client.create_repository(
                "acme",
                "acme-prod",
                description="acme-prod repo",
                topics=["gitops-managed-cluster"],
            )

        assert json.loads(create.calls.last.request.content) == {
            "name": "acme-prod",
            "private": True,
            "description": "acme-prod repo",
        }
        assert json.loads(topics.calls.last.request.content) == {"names": ["gitops-managed-cluster"]}
        assert repo.topics == ["gitops-managed-cluster"]

    @respx.mock
    async def test_create_user_repository(self, settings: ServiceSettings):
        create = respx.post(f"{BASE_URL}/user/repos").mock(
            return_value=httpx.Response(201, json={**REPO_PAYLOAD, "full_name": "octocat/acme-prod"})
        )

        async with GitHubClient(settings, "t") as client:
            repo = await client.create_repository("octocat", "acme-prod", as_org=False)

        assert create.called
        assert repo.owner == "octocat"

    @respx.mock
    async def test_search_by_topic(self, settings: ServiceSettings):
        route = respx.get(f"{BASE_URL}/search/repositories").mock(
            return_value=httpx.Response(200, json={"total_count": 1, "items": [REPO_PAYLOAD]})
        )

        async with GitHubClient(settings, "t") as client:
            repos = await client.search_by_topic("gitops-managed-cluster", limit=10)

        params = route.calls.last.request.url.params
        assert params["q"] == "topic:gitops-managed-cluster"
        assert params["sort"] == "pushed"
        assert params["per_page"] == "10"
        assert [r.full_name for r in repos] == ["acme/acme-prod"]


@pytest.mark.unit
class TestSecrets:
    """Tests for Actions secret endpoints."""

    @respx.mock
    async def test_get_public_key(self, settings: ServiceSettings):
        raw = bytes(range(32))
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/secrets/public-key").mock(
            return_value=httpx.Response(
                200, json={"key_id": "k1", "key": base64.b64encode(raw).decode()}
            )
        )

        async with GitHubClient(settings, "t") as client:
            key = await client.get_public_key("acme", "acme-prod")

        assert key.key_id == "k1"
        assert key.key == raw

    @respx.mock
    async def test_get_public_key_bad_base64(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/secrets/public-key").mock(
            return_value=httpx.Response(200, json={"key_id": "k1", "key": "%%%"})
        )

        async with GitHubClient(settings, "t") as client:
            with pytest.raises(SealingError):
                await client.get_public_key("acme", "acme-prod")

    @respx.mock
    async def test_upload_secret(self, settings: ServiceSettings):
        route = respx.put(f"{BASE_URL}/repos/acme/acme-prod/actions/secrets/githubToken").mock(
            return_value=httpx.Response(201)
        )

        async with GitHubClient(settings, "t") as client:
            await client.upload_secret("acme", "acme-prod", "githubToken", "c2VhbGVk", "k1")

        assert json.loads(route.calls.last.request.content) == {
            "encrypted_value": "c2VhbGVk",
            "key_id": "k1",
        }


@pytest.mark.unit
class TestWorkflowRuns:
    """Tests for workflow run endpoints."""

    @respx.mock
    async def test_latest_workflow_run(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/runs").mock(
            return_value=httpx.Response(
                200,
                json={
                    "total_count": 3,
                    "workflow_runs": [
                        {
                            "id": 42,
                            "html_url": "https://github.com/acme/acme-prod/actions/runs/42",
                            "status": "completed",
                            "conclusion": "success",
                        }
                    ],
                },
            )
        )

        async with GitHubClient(settings, "t") as client:
            run = await client.latest_workflow_run("acme", "acme-prod")

        assert run is not None
        assert run.id == 42
        assert run.conclusion == "success"

    @respx.mock
    async def test_no_workflow_runs(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/runs").mock(
            return_value=httpx.Response(200, json={"total_count": 0, "workflow_runs": []})
        )

        async with GitHubClient(settings, "t") as client:
            assert await client.latest_workflow_run("acme", "acme-prod") is None

    @respx.mock
    async def test_list_workflow_jobs(self, settings: ServiceSettings):
        respx.get(f"{BASE_URL}/repos/acme/acme-prod/actions/runs/42/jobs").mock(
            return_value=httpx.Response(
                200,
                json={
                    "jobs": [
                        {
                            "id": 1,
                            "name": "reconcile",
                            "status": "in_progress",
                            "steps": [{"name": "Set up job", "status": "completed"}],
                        }
                    ]
                },
            )
        )

        async with GitHubClient(settings, "t") as client:
            jobs = await client.list_workflow_jobs("acme", "acme-prod", 42)

        assert jobs[0].name == "reconcile"
        assert jobs[0].steps == [{"name": "Set up job", "status": "completed"}]
