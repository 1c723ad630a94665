# ABOUTME: gitops-api package initialization
# ABOUTME: Exposes version information for the cluster control plane

"""
gitops-api - a control plane for clusters whose desired state lives in git.

=============================================================================
WHAT DOES IT DO?
=============================================================================

Every cluster is a private GitHub repository holding a cluster.yaml. The
service never touches infrastructure directly: it edits that file, commits,
and pushes. The push triggers a CI workflow (the reconciler) which makes the
real cluster match the file.

    clone-from-template  new repository from a template + sealed CI secrets
    state                spec.state := present | absent
    profiles             spec.profiles := [...]
    run-status/clusters  read the reconciler's workflow runs

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

gitops_api/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── api.py               <- FastAPI HTTP surface
├── server.py            <- FastMCP tool surface
├── service.py           <- Safety checks and audit around every operation
├── pipeline.py          <- clone -> edit -> commit -> push
├── status.py            <- Workflow run status and fleet listing
├── models.py            <- Request models
├── config.py            <- Configuration management (env vars, settings)
├── errors.py            <- Error taxonomy
└── utils/
    ├── client.py        <- GitHub REST client
    ├── vcs.py           <- git capability + git CLI backend
    ├── editor.py        <- Path-addressed YAML editing
    ├── sealing.py       <- Sealed-box secret encryption
    ├── workspace.py     <- Disposable workspaces
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only mode and rate limiting
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
