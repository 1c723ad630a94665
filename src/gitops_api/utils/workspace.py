# ABOUTME: Disposable per-request workspace directories
# ABOUTME: Guarantees every workspace is removed on success, error, and cancellation

"""Scoped temporary workspaces for clone/edit/push cycles."""

from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from gitops_api.errors import WorkspaceError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Workspace:
    """A private directory owned by exactly one request."""

    root: Path

    def path(self, name: str) -> Path:
        """Path of an entry inside the workspace."""
        return self.root / name


class WorkspaceManager:
    """Creates uniquely named temporary directories and removes them on exit."""

    def __init__(self, root: Path | None = None, prefix: str = "gitops-") -> None:
        self._root = root
        self._prefix = prefix

    @contextmanager
    def acquire(self) -> Iterator[Workspace]:
        """
        Yield a fresh workspace; delete it recursively when the block exits.

        The finally clause runs for normal exit, exceptions and
        asyncio.CancelledError alike.

        Raises:
            WorkspaceError: The directory could not be created, or could not
                be removed after an otherwise successful block.
        """
        try:
            root = Path(tempfile.mkdtemp(prefix=self._prefix, dir=self._root))
        except OSError as e:
            raise WorkspaceError(f"cannot create workspace: {e}", operation="acquire_workspace") from e

        log = logger.bind(workspace=str(root))
        log.debug("Workspace acquired")
        failed = False
        try:
            yield Workspace(root)
        except BaseException:
            failed = True
            raise
        finally:
            try:
                shutil.rmtree(root)
                log.debug("Workspace released")
            except OSError as e:
                log.error("Workspace cleanup failed", error=str(e))
                # Never mask the exception that is already propagating.
                if not failed:
                    raise WorkspaceError(
                        f"cannot remove workspace: {e}", operation="release_workspace"
                    ) from e
