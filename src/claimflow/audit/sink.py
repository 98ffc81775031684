"""Audit event sinks for claimflow.

Every claim transition and receipt operation is recorded as one audit event.
All sinks implement the AuditSink protocol and are append-only: events are
never rewritten or truncated.

Serialization is deterministic (sorted keys, no extra whitespace) so that the
JSONL log can be diffed and replayed.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "CLAIMFLOW_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/audit_events.jsonl"


class AuditSinkError(Exception):
    """Raised when audit event emission fails."""

    pass


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for audit event sinks."""

    def emit(self, event: dict[str, Any]) -> None:
        """Emit an audit event to the sink.

        Raises:
            AuditSinkError: If emission fails for any reason
        """
        ...


def _serialize(event: dict[str, Any]) -> str:
    try:
        return json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Failed to serialize audit event: {e}") from e


def build_audit_event(
    event_type: str,
    resource_type: str,
    resource_id: str,
    actor_id: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Build an audit event dict.

    Args:
        event_type: Dotted event name, e.g. ``claim.transitioned``.
        resource_type: ``claim`` or ``receipt``.
        resource_id: ID of the affected record.
        actor_id: Actor who performed the operation.
        details: Event-specific payload.
        request_id: Request correlation ID, when called from the API.
    """
    event: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "actor_id": actor_id,
        "occurred_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "details": details or {},
    }
    if request_id:
        event["request_id"] = request_id
    return event


class JsonlFileAuditSink:
    """Append-only JSONL file sink.

    The file path comes from CLAIMFLOW_AUDIT_LOG_PATH (default
    ./var/audit/audit_events.jsonl); parent directories are created on first
    write. Writes are serialized with a lock so concurrent requests never
    interleave partial lines.
    """

    def __init__(self, file_path: str | None = None) -> None:
        """Initialize the JSONL file sink.

        Args:
            file_path: Override path for the audit log file.
        """
        path = file_path or os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH
        self._file_path = Path(path)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def emit(self, event: dict[str, Any]) -> None:
        """Append one event as a JSON line.

        Raises:
            AuditSinkError: If serialization, directory creation or the write fails
        """
        line = _serialize(event) + "\n"

        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditSinkError(
                f"Failed to create audit log directory {self._file_path.parent}: {e}"
            ) from e

        try:
            with self._lock, open(self._file_path, mode="a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise AuditSinkError(f"Failed to write audit event to {self._file_path}: {e}") from e


class InMemoryAuditSink:
    """In-memory audit sink for testing (no disk writes).

    Events round-trip through JSON so tests see exactly what the file sink
    would have written.
    """

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        """Store the event in memory."""
        stored = json.loads(_serialize(event))
        with self._lock:
            self._events.append(stored)

    @property
    def events(self) -> list[dict[str, Any]]:
        """Return all emitted events."""
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        """Return the emitted events of one type."""
        return [e for e in self.events if e["event_type"] == event_type]

    def clear(self) -> None:
        """Clear all stored events."""
        with self._lock:
            self._events.clear()


def get_audit_sink() -> AuditSink:
    """Return the configured audit sink (JSONL file)."""
    return JsonlFileAuditSink()
