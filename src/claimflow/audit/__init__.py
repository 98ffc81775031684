"""claimflow audit module - append-only audit event logging."""

from claimflow.audit.sink import (
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    build_audit_event,
    get_audit_sink,
)

__all__ = [
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "build_audit_event",
    "get_audit_sink",
]
