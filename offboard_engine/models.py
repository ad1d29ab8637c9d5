"""
Core data models for the Offboard Engine.

This module defines the Pydantic models used throughout the system
for directory identities, audit records, log events, and cycle summaries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class RecordStatus(str, Enum):
    """Outcome of a disable action as captured in the audit trail."""
    DISABLED = "Disabled"
    PARTIAL = "Partial"


class Identity(BaseModel):
    """A directory principal returned by an eligible-source query."""
    principal_id: str = Field(..., description="Directory object ID")
    principal_name: Optional[str] = Field(None, description="Cross-system join key (UPN)")
    display_name: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        """Case-insensitive comparison key, None when unresolvable."""
        if not self.principal_name or not self.principal_name.strip():
            return None
        return self.principal_name.strip().lower()


class GroupGrant(BaseModel):
    """A group membership captured in an access snapshot."""
    group_id: str
    display_name: str = ""
    mail_enabled: bool = False
    security_enabled: bool = True


class AuditRecord(BaseModel):
    """Snapshot of a disabled identity's prior access, one per disable event."""
    user: str = Field(..., description="Identifier, suffixed once superseded")
    principal_name: str
    status: RecordStatus = RecordStatus.DISABLED
    timestamp: datetime = Field(default_factory=utcnow)
    groups: List[GroupGrant] = Field(default_factory=list)
    calendar_permissions: List[Dict[str, Any]] = Field(default_factory=list)
    backup_path: Optional[str] = None
    errors: List[str] = Field(default_factory=list)

    @field_validator('timestamp')
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ErrorEntry(BaseModel):
    """One line of the error log."""
    timestamp: datetime = Field(default_factory=utcnow)
    principal_name: str
    reason: str
    kind: str = "VerificationFailure"


class ActionEntry(BaseModel):
    """One line of the action log."""
    timestamp: datetime = Field(default_factory=utcnow)
    principal_name: str
    action: str
    detail: Dict[str, Any] = Field(default_factory=dict)


class CycleSummary(BaseModel):
    """Immutable result of one reconciliation cycle."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    identified: int
    applied: int
    previously_processed: int
    error_count: int
    simulation: bool = False
    evicted: List[str] = Field(default_factory=list)
    pending: int = 0
    skipped_unresolved: int = 0
    failed: int = 0


class DisableOutcome(BaseModel):
    """Result of running the disable sequence for one identifier."""
    identifier: str
    record: Optional[AuditRecord] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.record is not None and not self.errors


class ReclaimSummary(BaseModel):
    """Result of one license reclamation run."""
    timestamp: datetime
    due: int
    reclaimed: int
    not_due: int
    errors: List[str] = Field(default_factory=list)

