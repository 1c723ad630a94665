# ABOUTME: Utilities package initialization for gitops-api
# ABOUTME: Contains the collaborators the mutation pipeline is assembled from

"""
gitops-api Utilities Package

Shared utilities:
    - client.py: GitHub API client with retry logic
    - vcs.py: git operations behind the VersionControl protocol
    - editor.py: path-addressed YAML editing with change detection
    - sealing.py: sealed-box encryption and the secret writer
    - workspace.py: scoped temporary directories
    - safety.py: read-only mode and rate limiting
    - logging.py: structured logging with correlation IDs
"""
