"""
Audit Package.

Exports the audit trail, event logs and snapshot evidence store.
"""

from .audit_trail import AuditTrailStore, superseded_identifier
from .event_log import EventLog, action_log, error_log
from .evidence_store import EvidenceStore

__all__ = [
    "AuditTrailStore",
    "EventLog",
    "EvidenceStore",
    "action_log",
    "error_log",
    "superseded_identifier",
]
