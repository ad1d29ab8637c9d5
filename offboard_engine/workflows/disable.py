"""
Disable Workflow for the Offboard Engine.

Handles the immediate part of offboarding: blocks the account, rotates its
credential, snapshots its access into the audit trail, strips group and
calendar access and moves the account into the quarantine scope.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..audit.audit_trail import AuditTrailStore
from ..audit.evidence_store import EvidenceStore
from ..config import EngineConfig
from ..connectors import BaseConnector
from ..exceptions import OffboardEngineError, PerIdentityActionFailure
from ..models import AuditRecord, DisableOutcome, GroupGrant, RecordStatus
from .base_workflow import BaseWorkflow, WorkflowStep
from .helpers import generate_password, normalize_identifier

logger = logging.getLogger(__name__)


class DisableWorkflow(BaseWorkflow):
    """
    Workflow for disabling departing identities.

    Every step is idempotent and best-effort; the access snapshot captured
    before revocation is written to the audit trail even when later steps
    fail.
    """

    def __init__(self, config: EngineConfig, connector: Optional[BaseConnector] = None,
                 audit_trail: Optional[AuditTrailStore] = None,
                 evidence_store: Optional[EvidenceStore] = None, clock=None):
        super().__init__(config, connector, clock)
        self.audit_trail = audit_trail or AuditTrailStore(config.audit_trail_path)
        self.evidence_store = evidence_store or EvidenceStore(config.backup_dir)

    def execute(self, identifier: str) -> DisableOutcome:
        """
        Disable one identity.

        Args:
            identifier: Account name or principal name

        Returns:
            DisableOutcome holding the persisted AuditRecord

        Raises:
            PerIdentityActionFailure: If the identifier cannot be resolved at all
        """
        self.steps = []
        self.errors = []
        self.started_at = self.clock.now()
        logger.info(f"Starting disable workflow for {identifier}")

        try:
            user, principal_name = normalize_identifier(identifier, self.config.upn_domain)
        except ValueError as e:
            raise PerIdentityActionFailure(identifier, "normalize", str(e)) from e

        lookup = WorkflowStep("get_user", principal_name, {"principal_name": principal_name})
        if not self._execute_step(lookup):
            raise PerIdentityActionFailure(identifier, "get_user", lookup.error)
        principal_id = lookup.result.principal_id

        self._execute_step(WorkflowStep("revoke_sign_in", principal_name, {"principal_id": principal_id}))
        self._execute_step(WorkflowStep(
            "rotate_password", principal_name,
            {"principal_id": principal_id, "password": generate_password()},
        ))

        groups_step = WorkflowStep("list_group_memberships", principal_name, {"principal_id": principal_id})
        groups: List[GroupGrant] = groups_step.result if self._execute_step(groups_step) else []

        calendar_step = WorkflowStep("list_calendar_permissions", principal_name, {"principal_name": principal_name})
        calendar: List[Dict[str, Any]] = calendar_step.result if self._execute_step(calendar_step) else []

        record = self._persist_snapshot(user, principal_name, groups, calendar)

        self._revoke_mfa_groups(principal_id, groups, snapshot_ok=groups_step.success)
        if self.config.skip_mail_groups:
            logger.info(f"Skipping mail-enabled group removal for {principal_name}")
        else:
            self._revoke_mail_groups(principal_id, groups)

        if self.config.skip_calendar_permissions:
            logger.info(f"Skipping calendar permission removal for {principal_name}")
        else:
            for permission in calendar:
                self._execute_step(WorkflowStep(
                    "revoke_calendar_permission", str(permission.get("folder", "")),
                    {"principal_name": principal_name, "permission": permission},
                ))

        if self.config.quarantine_scope:
            self._execute_step(WorkflowStep(
                "move_to_scope", self.config.quarantine_scope,
                {"principal_id": principal_id, "scope": self.config.quarantine_scope},
            ))

        self.completed_at = self.clock.now()
        for step in self.steps:
            if not step.success:
                self._log_error(principal_name, f"{step.operation}({step.resource}): {step.error}",
                                kind="PerIdentityActionFailure")
        self._log_action(
            principal_name, "disable",
            user=user,
            status=record.status.value if record else None,
            failed_steps=[s.operation for s in self.steps if not s.success],
        )

        logger.info(f"Completed disable workflow for {principal_name}: "
                    f"{len(self.steps)} steps, {len(self.errors)} errors")
        return DisableOutcome(
            identifier=identifier,
            record=record,
            steps=[s.to_dict() for s in self.steps],
            errors=self.errors.copy(),
        )

    def execute_many(self, identifiers: Iterable[str]) -> List[DisableOutcome]:
        """
        Disable several identities; one failing does not stop the others.

        Args:
            identifiers: Account or principal names

        Returns:
            One DisableOutcome per identifier, in input order
        """
        outcomes = []
        for identifier in identifiers:
            try:
                outcomes.append(self.execute(identifier))
            except PerIdentityActionFailure as e:
                logger.error(f"Disable failed for {identifier}: {e}")
                self._log_error(identifier, str(e), kind="PerIdentityActionFailure")
                outcomes.append(DisableOutcome(
                    identifier=identifier,
                    steps=[s.to_dict() for s in self.steps],
                    errors=[str(e)],
                ))
        return outcomes

    def _persist_snapshot(self, user: str, principal_name: str, groups: List[GroupGrant],
                          calendar: List[Dict[str, Any]]) -> Optional[AuditRecord]:
        """Write the backup file and the audit record for the snapshot taken so far."""
        taken_at = self.clock.now()

        backup_path = None
        try:
            backup_path = self.evidence_store.store_snapshot(user, {
                "user": user,
                "principal_name": principal_name,
                "taken_at": taken_at.isoformat(),
                "groups": [g.model_dump() for g in groups],
                "calendar_permissions": calendar,
            }, taken_at)
        except OSError as e:
            self.errors.append(f"store_snapshot({user}): {e}")
            logger.error(f"Failed to store snapshot for {user}: {e}")
            self._log_error(principal_name, f"store_snapshot: {e}", kind="PerIdentityActionFailure")

        record = AuditRecord(
            user=user,
            principal_name=principal_name,
            status=RecordStatus.PARTIAL if self.errors else RecordStatus.DISABLED,
            timestamp=taken_at,
            groups=groups,
            calendar_permissions=calendar,
            backup_path=backup_path,
            errors=self.errors.copy(),
        )
        try:
            return self.audit_trail.append(record)
        except (OffboardEngineError, OSError) as e:
            self.errors.append(f"append_audit_record({user}): {e}")
            logger.error(f"Failed to append audit record for {user}: {e}")
            self._log_error(principal_name, f"append_audit_record: {e}", kind="PerIdentityActionFailure")
            return None

    def _revoke_mfa_groups(self, principal_id: str,
                           groups: List[GroupGrant], snapshot_ok: bool) -> None:
        mfa_ids = list(self.config.mfa_group_ids)
        if snapshot_ok:
            member_of = {g.group_id for g in groups}
            mfa_ids = [g for g in mfa_ids if g in member_of]

        for group_id in mfa_ids:
            self._execute_step(WorkflowStep(
                "remove_from_group", group_id,
                {"principal_id": principal_id, "group_id": group_id},
            ))

    def _revoke_mail_groups(self, principal_id: str, groups: List[GroupGrant]) -> None:
        # License groups stay until the reclamation phase
        excluded = set(self.config.mfa_group_ids) | set(self.config.license_group_ids)
        for group in groups:
            if not group.mail_enabled or group.group_id in excluded:
                continue
            self._execute_step(WorkflowStep(
                "remove_from_group", group.group_id,
                {"principal_id": principal_id, "group_id": group.group_id},
            ))
