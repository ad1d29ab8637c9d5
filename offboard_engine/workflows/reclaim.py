"""
Reclaim Workflow for the Offboard Engine.

Removes held principals from the license groups once their scheduled
reclamation time has passed. Entries that fail stay scheduled and are
retried on the next run; the reconciliation cycle's verification step
catches any that never complete. Schedule entries for principals no longer
in the tracked set are dropped without touching their licenses.
"""

import logging
from typing import List, Optional

from ..config import EngineConfig
from ..connectors import BaseConnector
from ..engine.scheduler import ReclamationScheduler
from ..engine.tracked_set import TrackedSetStore
from ..locking import StateLock
from ..models import ReclaimSummary
from .base_workflow import BaseWorkflow, WorkflowStep

logger = logging.getLogger(__name__)


class ReclaimWorkflow(BaseWorkflow):
    """Workflow for reclaiming licenses from principals whose hold is in place."""

    def __init__(self, config: EngineConfig, connector: Optional[BaseConnector] = None,
                 scheduler: Optional[ReclamationScheduler] = None,
                 tracked_set: Optional[TrackedSetStore] = None, clock=None):
        super().__init__(config, connector, clock)
        self.scheduler = scheduler or ReclamationScheduler(config.resolved_schedule_path, clock=self.clock)
        self.tracked_set = tracked_set or TrackedSetStore(config.tracked_set_path)

    def execute(self) -> ReclaimSummary:
        """
        Process every due reclamation of a tracked principal.

        Returns:
            ReclaimSummary with due, reclaimed and not-yet-due counts
        """
        self.steps = []
        self.errors = []
        self.started_at = self.clock.now()

        if not self.config.license_group_ids:
            logger.warning("No license_group_ids configured; nothing to reclaim")

        # Shares the single-writer lock with reconciliation cycles
        with StateLock(self.tracked_set.path):
            scheduled = self.scheduler.load()
            tracked = {name.lower() for name in self.tracked_set.load()}

            due = []
            stale = []
            for entry in self.scheduler.due(self.started_at):
                if entry.principal_name.lower() in tracked:
                    due.append(entry)
                else:
                    stale.append(entry.principal_name)

            if stale:
                logger.warning(f"Dropping {len(stale)} scheduled reclamations for untracked principals: {stale}")
                self.scheduler.clear(stale)

            logger.info(f"{len(due)} of {len(scheduled)} scheduled reclamations are due")

            reclaimed: List[str] = []
            for entry in due:
                if self._reclaim(entry.principal_name):
                    reclaimed.append(entry.principal_name)

            self.scheduler.clear(reclaimed)

        self.completed_at = self.clock.now()
        logger.info(f"Reclaimed licenses from {len(reclaimed)} of {len(due)} due principals")
        return ReclaimSummary(
            timestamp=self.started_at,
            due=len(due),
            reclaimed=len(reclaimed),
            not_due=len(scheduled) - len(due) - len(stale),
            errors=self.errors.copy(),
        )

    def _reclaim(self, principal_name: str) -> bool:
        lookup = WorkflowStep("get_user", principal_name, {"principal_name": principal_name})
        if not self._execute_step(lookup):
            self._log_error(principal_name, f"get_user: {lookup.error}", kind="PerIdentityActionFailure")
            return False
        principal_id = lookup.result.principal_id

        ok = True
        for group_id in self.config.license_group_ids:
            step = WorkflowStep("remove_from_group", group_id,
                                {"principal_id": principal_id, "group_id": group_id})
            if not self._execute_step(step):
                ok = False
                self._log_error(principal_name, f"remove_from_group({group_id}): {step.error}",
                                kind="PerIdentityActionFailure")

        if ok:
            self._log_action(principal_name, "reclaim_licenses",
                             principal_id=principal_id,
                             groups=list(self.config.license_group_ids))
        return ok
