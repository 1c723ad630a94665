# ABOUTME: FastAPI application exposing the cluster control-plane HTTP API
# ABOUTME: Maps JSON requests onto the control plane and errors onto 400 responses

"""
HTTP API.

    POST /api/cluster/clone-from-template   new cluster repository from a template
    POST /api/cluster/state                 set spec.state to present/absent
    POST /api/cluster/profiles              replace spec.profiles
    POST /api/cluster/run-status            latest CI run of a cluster
    POST /api/clusters                      all managed clusters

Success is 200 {"result": ...}. Every failure, malformed bodies included, is
400 {"error": "...", "kind": "..."} where kind is the stable error kind.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gitops_api.config import ServiceSettings, load_settings
from gitops_api.errors import GitopsError, ValidationError
from gitops_api.models import (
    ClusterStateRequest,
    ClusterTemplateCloneRequest,
    ListClustersRequest,
    ProfileApplyRequest,
    RunStatusRequest,
)
from gitops_api.service import ControlPlane
from gitops_api.utils.logging import configure_logging, get_correlation_id, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class OperationFailed(Exception):
    """A GitopsError raised by a route, with the route's failure prefix."""

    def __init__(self, prefix: str, error: GitopsError) -> None:
        self.prefix = prefix
        self.error = error
        super().__init__(f"{prefix}: {error}")


def _error_response(message: str, kind: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message, "kind": kind})


def _describe_validation(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid request"


def get_control_plane(request: Request) -> ControlPlane:
    control_plane: ControlPlane = request.app.state.control_plane
    return control_plane


def create_app(
    settings: ServiceSettings | None = None,
    control_plane: ControlPlane | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings; loaded from the environment when omitted.
        control_plane: Prebuilt control plane (tests inject one with fakes).
    """
    settings = settings or (control_plane.settings if control_plane else load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(level=settings.log_level, json_output=settings.json_logs)
        logger.info("Starting gitops-api", github_api=settings.github_api_url)
        yield
        logger.info("gitops-api stopped")

    app = FastAPI(title="gitops-api", lifespan=lifespan)
    app.state.control_plane = control_plane or ControlPlane(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation(request: Request, call_next):  # noqa: ANN001, ANN202 - FastAPI middleware signature
        set_correlation_id(request.headers.get(CORRELATION_HEADER, ""))
        cid = get_correlation_id()
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response

    @app.exception_handler(RequestValidationError)
    async def bad_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
        message = f"Bad request: {_describe_validation(exc)}"
        logger.info("Rejected request", error=message)
        return _error_response(message, ValidationError.kind)

    @app.exception_handler(OperationFailed)
    async def operation_failed(_request: Request, exc: OperationFailed) -> JSONResponse:
        return _error_response(str(exc), exc.error.kind)

    @app.post("/api/cluster/clone-from-template")
    async def clone_from_template(
        body: ClusterTemplateCloneRequest,
        control_plane: ControlPlane = Depends(get_control_plane),
    ) -> dict[str, Any]:
        try:
            outcome = await control_plane.clone_from_template(body)
        except GitopsError as e:
            raise OperationFailed("Template cloning failed", e) from e
        return outcome.to_dict()

    @app.post("/api/cluster/state")
    async def change_cluster_state(
        body: ClusterStateRequest,
        control_plane: ControlPlane = Depends(get_control_plane),
    ) -> dict[str, Any]:
        try:
            outcome = await control_plane.change_cluster_state(body)
        except GitopsError as e:
            raise OperationFailed("Cluster state change failed", e) from e
        return outcome.to_dict()

    @app.post("/api/cluster/profiles")
    async def apply_profiles(
        body: ProfileApplyRequest,
        control_plane: ControlPlane = Depends(get_control_plane),
    ) -> dict[str, Any]:
        try:
            outcome = await control_plane.apply_profiles(body)
        except GitopsError as e:
            raise OperationFailed("Cluster profiles apply failed", e) from e
        return outcome.to_dict()

    @app.post("/api/cluster/run-status")
    async def run_status(
        body: RunStatusRequest,
        control_plane: ControlPlane = Depends(get_control_plane),
    ) -> dict[str, Any]:
        try:
            status = await control_plane.run_status(body)
        except GitopsError as e:
            raise OperationFailed("Fail to get cluster status", e) from e
        if status is None:
            return {"status": "", "conclusion": "", "link": "", "result": []}
        return status.to_dict()

    @app.post("/api/clusters")
    async def clusters(
        body: ListClustersRequest,
        control_plane: ControlPlane = Depends(get_control_plane),
    ) -> dict[str, Any]:
        try:
            statuses = await control_plane.list_clusters(body)
        except GitopsError as e:
            raise OperationFailed("Fail to list clusters and their status", e) from e
        return {"result": [status.to_dict() for status in statuses]}

    return app


def main() -> None:
    """Serve the HTTP API with uvicorn."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
