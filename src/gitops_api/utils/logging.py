# ABOUTME: Structured logging with correlation IDs for the gitops-api control plane
# ABOUTME: Implements audit logging of every mutation and status query

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: structlog key/value events, rendered as colored text
   for development or JSON for log aggregators.

2. CORRELATION IDs: one short id per request, stored in a ContextVar so that
   every log line emitted while handling the request (GitHub calls, git
   commands, sealing) can be tied back together:

       jq 'select(.correlation_id == "a1b2c3d4")'

3. AUDIT LOGGING: one record per operation with its outcome. For a GitOps
   control plane this is the answer to "who changed cluster X and when",
   next to the git history itself.

Each request handler calls set_correlation_id() first. asyncio copies the
context per task, so concurrent requests never see each other's ids.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Generated ids are the first 8 characters of a UUID4: unique enough within
    a short window and still readable in logs.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    Pass an empty string to have a fresh id generated on first use.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor adding the correlation ID to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging.

    Call once at startup; calling again reconfigures (e.g. to change level).

    Processor pipeline:
        merge_contextvars -> add_log_level -> TimeStamper(iso)
        -> add_correlation_id -> JSONRenderer | ConsoleRenderer

    Args:
        level: Logging level name ("DEBUG", "INFO", ...).
        json_output: JSON lines when True, colored console output otherwise.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Audit logger for recording every operation against the fleet.

    Each entry records:
    - timestamp: UTC ISO 8601
    - correlation_id: request identifier
    - action: operation name ("clone_from_template", "change_cluster_state", ...)
    - target: repository ("acme/acme-prod") or "fleet"
    - result: "success", "unchanged", "blocked" or "error"
    - details: optional context (commit sha, error kind, reason)

    Entries are appended as JSON lines to log_path when given, otherwise
    emitted through structlog.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log an auditable action."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }

        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        """Log a successful read (status query, fleet listing)."""
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a mutation.

        result is "success" when a commit was pushed and "unchanged" when the
        requested state was already in place.
        """
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Log an operation refused by the safety guard."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str, kind: str | None = None) -> None:
        """Log a failed operation."""
        details: dict[str, Any] = {"error": error}
        if kind:
            details["kind"] = kind
        self.log(action, target, "error", details)
