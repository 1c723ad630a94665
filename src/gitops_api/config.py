# ABOUTME: Configuration management for the gitops-api control plane
# ABOUTME: Handles environment variables, remote endpoints, timeouts, and safety settings

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module holds every tunable of the service. It:

1. READS environment variables (GITOPS_*, GITOPS_SAFETY_*)
2. VALIDATES them (URLs get a scheme, log levels are real levels, ...)
3. PROVIDES typed access to settings throughout the application

=============================================================================
ARCHITECTURE: TWO CONFIGURATION CLASSES
=============================================================================

1. SafetySettings: Guards on mutating operations (GITOPS_SAFETY_ prefix)
   - Read-only mode, rate limiting, audit log path

2. ServiceSettings: Main configuration container (GITOPS_ prefix)
   - GitHub API and git endpoints
   - Default identity for the MCP surface
   - Workspace placement, timeouts, committer identity
   - Log level, HTTP bind address
   - Contains SafetySettings as nested object

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

    GITOPS_GITHUB_API_URL     -> REST API base (default: https://api.github.com)
    GITOPS_GIT_BASE_URL       -> Base URL repositories are cloned from
    GITOPS_GITHUB_USER        -> Default identity (MCP tools only)
    GITOPS_GITHUB_TOKEN       -> Default token (MCP tools only)
    GITOPS_MANAGED_TOPIC      -> Marker topic (default: gitops-managed-cluster)
    GITOPS_CLUSTER_FILE       -> Specification file (default: cluster.yaml)
    GITOPS_HTTP_TIMEOUT       -> Per-request GitHub API timeout in seconds
    GITOPS_GIT_TIMEOUT        -> Per-command git timeout in seconds

    GITOPS_SAFETY_READ_ONLY          -> Block all mutations (default: false)
    GITOPS_SAFETY_RATE_LIMIT_CALLS   -> Max mutations per repo per window
    GITOPS_SAFETY_AUDIT_LOG          -> Path to JSON-lines audit file
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# SAFETY SETTINGS
# =============================================================================


class SafetySettings(BaseSettings):
    """
    Guards applied before any mutation reaches a repository.

    Unlike a read-mostly tool, a control plane exists to write, so
    read_only defaults to False. It is still worth having: flipping it
    freezes the whole fleet during an incident without redeploying.
    """

    model_config = SettingsConfigDict(env_prefix="GITOPS_SAFETY_")

    read_only: bool = Field(
        default=False,
        description="Block all mutating operations when true",
    )

    rate_limit_calls: int = Field(
        default=30,
        description="Maximum mutations per repository per window",
    )
    # Keyed by operation and repository, so one noisy cluster cannot starve
    # the others.

    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When None, audit entries go through structlog to stdout.


# =============================================================================
# MAIN SERVICE SETTINGS
# =============================================================================


class ServiceSettings(BaseSettings):
    """
    Main service configuration.

    USAGE:
    ------
        settings = load_settings()  # Reads from environment
        print(settings.github_api_url)
        print(settings.safety.read_only)
    """

    model_config = SettingsConfigDict(
        env_prefix="GITOPS_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # REMOTE ENDPOINTS
    # -------------------------------------------------------------------------

    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL",
    )

    git_base_url: str = Field(
        default="https://github.com",
        description="Base URL that '<owner>/<repo>' is appended to for cloning",
    )
    # For GitHub Enterprise this is the web host, e.g. https://github.example.com.
    # A file:// base is accepted and used without credentials (tests, mirrors).

    # -------------------------------------------------------------------------
    # DEFAULT IDENTITY
    # -------------------------------------------------------------------------

    github_user: str = Field(default="", description="Default GitHub user")
    github_token: SecretStr = Field(
        default=SecretStr(""),
        description="Default GitHub token",
    )
    # Only the MCP surface falls back to these. HTTP callers always send
    # their own credentials, and a client is built per request from them.

    # -------------------------------------------------------------------------
    # CLUSTER REPOSITORY CONVENTIONS
    # -------------------------------------------------------------------------

    managed_topic: str = Field(
        default="gitops-managed-cluster",
        description="Topic marking repositories managed by this service",
    )

    cluster_file: str = Field(
        default="cluster.yaml",
        description="Path of the cluster specification inside each repository",
    )

    search_limit: int = Field(
        default=50,
        description="Maximum repositories returned when listing the fleet",
    )

    # -------------------------------------------------------------------------
    # WORKSPACES AND GIT
    # -------------------------------------------------------------------------

    workspace_root: Path | None = Field(
        default=None,
        description="Directory for per-request workspaces (system temp if unset)",
    )

    workspace_prefix: str = Field(default="gitops-", description="Workspace directory prefix")

    committer_name: str = Field(default="gitops-api", description="git committer name")
    committer_email: str = Field(
        default="gitops-api@users.noreply.github.com",
        description="git committer email",
    )

    # -------------------------------------------------------------------------
    # TIMEOUTS AND RETRIES
    # -------------------------------------------------------------------------

    http_timeout: float = Field(default=30.0, description="GitHub API timeout in seconds")
    git_timeout: float = Field(default=120.0, description="Timeout per git command in seconds")
    read_retry_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts for idempotent GitHub reads that time out (1 = no retry)",
    )
    # Writes are never retried; the caller re-issues the whole mutation.
    # With N attempts a read can take up to N * http_timeout plus backoff
    # (1s, 2s, 4s, ... capped at 10s between attempts).

    # -------------------------------------------------------------------------
    # SERVER
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8080, description="HTTP port")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins for the HTTP API",
    )

    safety: SafetySettings = Field(default_factory=SafetySettings)

    @field_validator("github_api_url", "git_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL has a scheme and no trailing slash."""
        if "://" not in v:
            v = f"https://{v}"
        return v.rstrip("/")

    def repository_url(self, owner: str, repo: str) -> str:
        """Plain (credential-free) clone URL for owner/repo."""
        return f"{self.git_base_url}/{owner}/{repo}"


def load_settings() -> ServiceSettings:
    """
    Load settings from environment with validation.

    If GITOPS_ENV_FILE is set, additional variables are read from that file.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServiceSettings(
        _env_file=os.environ.get("GITOPS_ENV_FILE"),
    )
