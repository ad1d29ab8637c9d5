"""
Reconciliation Engine for the Offboard Engine.

Each cycle moves newly disabled identities into the hold phase and checks
that identities already held actually went on to lose their licenses:

1. Verification - every tracked principal that is due is checked against
   the license groups. One that still holds a license is logged and
   evicted from the tracked set, which puts it back in line for the next
   cycle. Nothing is ever marked permanently failed.
2. Delta - eligible identities minus the tracked set (as it stood when the
   cycle started), keyed by principal name.
3. Phase application - for each delta identity: apply the hold, schedule
   reclamation, append to the tracked set, append to the action log. Each
   identity is one durability unit; a crash leaves a valid prefix.
4. Report - an immutable CycleSummary.

Cycles are single-threaded and hold an exclusive lock on the tracked set
for their whole duration.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..audit.event_log import EventLog, action_log, error_log
from ..config import EngineConfig
from ..connectors import BaseConnector, build_connector
from ..exceptions import CollaboratorUnavailable, VerificationFailure
from ..locking import StateLock
from ..models import ActionEntry, CycleSummary, ErrorEntry, Identity
from .scheduler import ReclamationScheduler, SystemClock
from .tracked_set import TrackedSetStore

logger = logging.getLogger(__name__)


class CycleContext:
    """Accumulates the state of one cycle as it passes through the steps."""

    def __init__(self, started_at: datetime, simulation: bool = False):
        self.started_at = started_at
        self.simulation = simulation
        self.previously_processed = 0
        self.identified = 0
        self.applied: List[str] = []
        self.failed: List[str] = []
        self.evicted: List[str] = []
        self.pending = 0
        self.skipped_unresolved = 0
        self.errors: List[ErrorEntry] = []

    def to_summary(self) -> CycleSummary:
        return CycleSummary(
            timestamp=self.started_at,
            identified=self.identified,
            applied=len(self.applied),
            previously_processed=self.previously_processed,
            error_count=len(self.errors),
            simulation=self.simulation,
            evicted=list(self.evicted),
            pending=self.pending,
            skipped_unresolved=self.skipped_unresolved,
            failed=len(self.failed),
        )


class ReconciliationEngine:
    """
    Batch control loop for the hold phase.

    Collaborators are injectable; anything not supplied is built from the
    configuration.
    """

    def __init__(
        self,
        config: EngineConfig,
        connector: Optional[BaseConnector] = None,
        tracked_set: Optional[TrackedSetStore] = None,
        scheduler: Optional[ReclamationScheduler] = None,
        clock=None,
        actions: Optional[EventLog] = None,
        errors: Optional[EventLog] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            connector: Eligible-source, phase-completion and phase-action collaborator
            tracked_set: Store of principals with the hold applied
            scheduler: Deferred reclamation trigger
            clock: Object with a ``now()`` method; defaults to SystemClock
            actions: Action log sink
            errors: Error log sink
        """
        self.config = config
        self.clock = clock or SystemClock()
        self.connector = connector or build_connector(config)
        self.tracked_set = tracked_set or TrackedSetStore(config.tracked_set_path)
        self.scheduler = scheduler or ReclamationScheduler(config.resolved_schedule_path, clock=self.clock)
        self.actions = actions or action_log(config.log_dir)
        self.errors = errors or error_log(config.log_dir)

    def run_cycle(self) -> CycleSummary:
        """
        Run one reconciliation cycle.

        Returns:
            CycleSummary for the cycle

        Raises:
            CollaboratorUnavailable: If the eligible source, the license
                groups or the hold service cannot be reached
            StateLockError: If another runner holds the tracked set
        """
        context = CycleContext(self.clock.now(), simulation=self.config.simulation)
        logger.info(f"Starting reconciliation cycle (simulation={self.config.simulation})")

        with StateLock(self.tracked_set.path):
            tracked = self.tracked_set.load()
            context.previously_processed = len(tracked)

            # Fetched before anything is mutated so an outage leaves state untouched
            eligible = self._query_eligible()

            evicted = self.verify(context, tracked)
            if evicted:
                self.tracked_set.remove(evicted)
                self.scheduler.clear(evicted)

            delta = self.compute_delta(eligible, tracked, context)
            self._apply_phase(context, delta)

        summary = context.to_summary()
        logger.info(
            f"Cycle complete: identified={summary.identified} applied={summary.applied} "
            f"previously_processed={summary.previously_processed} evicted={len(summary.evicted)} "
            f"pending={summary.pending} skipped_unresolved={summary.skipped_unresolved} "
            f"errors={summary.error_count}"
        )
        return summary

    def verify(self, context: CycleContext, tracked: List[str]) -> List[str]:
        """
        Check tracked principals against the license groups.

        Args:
            context: Current cycle context
            tracked: Tracked principal names at the start of the cycle

        Returns:
            Principal names that failed verification and must be evicted
        """
        if not tracked:
            return []
        if not self.config.license_group_ids:
            logger.warning("No license_group_ids configured; skipping verification")
            return []

        holders = self.connector.get_group_members(self.config.license_group_ids)
        holder_keys = {i.key for i in holders if i.key}
        schedule = self.scheduler.load()

        evicted = []
        for name in tracked:
            entry = schedule.get(name.lower())
            if entry is not None and entry.is_pending(context.started_at):
                context.pending += 1
                continue

            if name.lower() in holder_keys:
                failure = VerificationFailure(name, "license still assigned after reclamation was due")
                logger.warning(f"Verification failed for {failure}; evicting for retry")
                self._record_error(context, name, failure.reason, kind="VerificationFailure")
                evicted.append(name)

        context.evicted = evicted
        return evicted

    def compute_delta(self, eligible: Iterable[Identity], tracked: List[str],
                      context: CycleContext) -> List[Identity]:
        """
        Eligible identities not yet tracked, in source order, without repeats.

        Identities with no principal name cannot be matched against the
        tracked set; they are left out, counted and logged.
        """
        tracked_keys = {name.lower() for name in tracked}
        seen = set()
        delta = []

        for identity in eligible:
            key = identity.key
            if key is None:
                context.skipped_unresolved += 1
                logger.warning(f"Skipping {identity.principal_id}: no principal name to match on")
                self.actions.append(ActionEntry(
                    principal_name="",
                    action="skipped_unresolved",
                    detail={"principal_id": identity.principal_id, "display_name": identity.display_name},
                ))
                continue
            if key in tracked_keys or key in seen:
                continue
            seen.add(key)
            delta.append(identity)

        context.identified = len(delta)
        return delta

    def _query_eligible(self) -> List[Identity]:
        scope = self.config.eligibility_scope
        try:
            eligible = self.connector.list_disabled_identities(scope)
        except CollaboratorUnavailable:
            logger.error(f"Eligible source unavailable for scope {scope}; aborting cycle")
            raise
        except Exception as e:
            logger.error(f"Eligible source query failed for scope {scope}: {e}; aborting cycle")
            raise CollaboratorUnavailable("eligible-source", str(e)) from e

        logger.info(f"Eligible source returned {len(eligible)} identities in {scope}")
        return eligible

    def _apply_phase(self, context: CycleContext, delta: List[Identity]) -> None:
        delay = timedelta(hours=self.config.reclaim_delay_hours)
        duration = self.config.hold_duration_days

        for identity in delta:
            name = identity.principal_name.strip()
            try:
                result = self.connector.apply_litigation_hold(name, duration)
            except CollaboratorUnavailable:
                logger.error(f"Hold service unavailable at {name}; "
                             f"{len(context.applied)} of {len(delta)} applied before abort")
                raise

            if not result.success:
                context.failed.append(name)
                self._record_error(context, name, f"hold not applied: {result.error or result.message}",
                                   kind="PhaseActionFailure")
                continue

            entry = self.scheduler.schedule(name, delay)
            self.tracked_set.append(name)
            self.actions.append(ActionEntry(
                principal_name=name,
                action="litigation_hold",
                detail={
                    "principal_id": identity.principal_id,
                    "duration_days": duration,
                    "reclaim_due_at": entry.due_at.isoformat(),
                },
            ))
            context.applied.append(name)
            logger.info(f"Applied hold to {name}")

    def _record_error(self, context: CycleContext, principal_name: str, reason: str, kind: str) -> None:
        entry = ErrorEntry(timestamp=self.clock.now(), principal_name=principal_name, reason=reason, kind=kind)
        self.errors.append(entry)
        context.errors.append(entry)
