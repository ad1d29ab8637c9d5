"""
Tests for the Reconciliation Engine.

Covers the cycle end to end against the MockConnector: first run, steady
state, verification eviction and retry, delta computation and the fatal
and recoverable failure paths.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from conftest import LICENSE_GROUP, SCOPE
from offboard_engine.audit import action_log, error_log
from offboard_engine.connectors import ConnectorResult
from offboard_engine.engine import CycleContext, ReclamationScheduler, ReconciliationEngine, TrackedSetStore
from offboard_engine.exceptions import CollaboratorUnavailable, StateLockError
from offboard_engine.locking import StateLock
from offboard_engine.models import CycleSummary, Identity

JSMITH = "jsmith@contoso.com"
MJONES = "mjones@contoso.com"


@pytest.fixture
def directory(connector):
    """Two disabled identities in the eligibility scope."""
    connector.add_user("id-jsmith", JSMITH, enabled=False, scope=SCOPE, display_name="John Smith")
    connector.add_user("id-mjones", MJONES, enabled=False, scope=SCOPE, display_name="Mary Jones")
    return connector


@pytest.fixture
def engine(engine_config, directory, clock):
    return ReconciliationEngine(engine_config, connector=directory, clock=clock)


@pytest.fixture
def tracked(engine_config):
    return TrackedSetStore(engine_config.tracked_set_path)


def hold_license(directory, principal_id):
    directory.groups[LICENSE_GROUP]["members"].add(principal_id)


class TestFirstRun:
    """A cycle against an empty tracked set."""

    def test_applies_hold_to_every_eligible_identity(self, engine, directory, tracked):
        summary = engine.run_cycle()

        assert isinstance(summary, CycleSummary)
        assert summary.identified == 2
        assert summary.applied == 2
        assert summary.previously_processed == 0
        assert summary.error_count == 0
        assert summary.simulation is False
        assert tracked.load() == [JSMITH, MJONES]
        assert directory.holds == {JSMITH: 2555, MJONES: 2555}

    def test_schedules_reclamation_after_delay(self, engine, engine_config, clock):
        engine.run_cycle()

        entries = ReclamationScheduler(engine_config.resolved_schedule_path).load()
        assert set(entries) == {JSMITH, MJONES}
        assert entries[JSMITH].due_at == clock.now() + timedelta(hours=12)

    def test_writes_one_action_line_per_identity(self, engine, engine_config):
        engine.run_cycle()

        entries = action_log(engine_config.log_dir).read()
        assert [e.principal_name for e in entries] == [JSMITH, MJONES]
        assert all(e.action == "litigation_hold" for e in entries)
        assert entries[0].detail["duration_days"] == 2555

    def test_summary_is_immutable(self, engine):
        summary = engine.run_cycle()

        with pytest.raises(ValidationError):
            summary.applied = 10

    def test_hold_duration_comes_from_config(self, engine_config, directory, clock):
        config = engine_config.model_copy(update={"hold_duration_days": 365})
        ReconciliationEngine(config, connector=directory, clock=clock).run_cycle()

        assert directory.holds[JSMITH] == 365


class TestSteadyState:
    """Re-running a cycle when nothing changed."""

    def test_rerun_identifies_nothing(self, engine):
        engine.run_cycle()
        summary = engine.run_cycle()

        assert summary.identified == 0
        assert summary.applied == 0
        assert summary.previously_processed == 2
        assert summary.pending == 2

    def test_verified_principals_stay_tracked(self, engine, tracked, clock):
        engine.run_cycle()
        clock.advance(hours=13)

        summary = engine.run_cycle()

        assert summary.evicted == []
        assert summary.pending == 0
        assert summary.error_count == 0
        assert tracked.load() == [JSMITH, MJONES]


class TestSelfHealing:
    """Verification evicts principals whose reclamation never happened."""

    def test_still_licensed_principal_is_evicted_and_retried(self, engine, engine_config, directory, tracked):
        tracked.save([MJONES])
        hold_license(directory, "id-mjones")

        summary = engine.run_cycle()

        assert summary.evicted == [MJONES]
        assert summary.error_count == 1
        assert summary.previously_processed == 1
        # Evicted names are not in the same cycle's delta
        assert summary.identified == 1
        assert tracked.load() == [JSMITH]

        errors = error_log(engine_config.log_dir).read()
        assert len(errors) == 1
        assert errors[0].principal_name == MJONES
        assert errors[0].kind == "VerificationFailure"

        retry = engine.run_cycle()
        assert retry.identified == 1
        assert retry.applied == 1
        assert tracked.load() == [JSMITH, MJONES]

    def test_pending_principals_are_not_verified(self, engine, directory, tracked, clock):
        engine.run_cycle()
        hold_license(directory, "id-jsmith")

        early = engine.run_cycle()
        assert early.evicted == []
        assert early.pending == 2

        clock.advance(hours=13)
        due = engine.run_cycle()
        assert due.evicted == [JSMITH]
        assert due.pending == 0
        assert tracked.load() == [MJONES]

    def test_eviction_clears_the_reclamation_schedule(self, engine, directory, tracked, clock):
        engine.run_cycle()
        hold_license(directory, "id-jsmith")
        clock.advance(hours=13)

        summary = engine.run_cycle()

        assert summary.evicted == [JSMITH]
        assert set(engine.scheduler.load()) == {MJONES}

    def test_verify_matches_case_insensitively(self, engine, directory, clock):
        hold_license(directory, "id-mjones")
        context = CycleContext(clock.now())

        evicted = engine.verify(context, ["MJones@Contoso.com", JSMITH])

        assert evicted == ["MJones@Contoso.com"]
        assert context.evicted == evicted
        assert len(context.errors) == 1

    def test_verify_does_not_touch_the_tracked_set(self, engine, directory, tracked, clock):
        tracked.save([MJONES])
        hold_license(directory, "id-mjones")

        engine.verify(CycleContext(clock.now()), [MJONES])

        assert tracked.load() == [MJONES]

    def test_verification_skipped_without_license_groups(self, engine_config, directory, tracked, clock):
        config = engine_config.model_copy(update={"license_group_ids": []})
        tracked.save([MJONES])
        hold_license(directory, "id-mjones")

        summary = ReconciliationEngine(config, connector=directory, clock=clock).run_cycle()

        assert summary.evicted == []
        assert MJONES in tracked.load()


class TestDeltaComputation:
    """Eligible minus tracked, keyed by principal name."""

    def test_excludes_tracked_repeats_and_unresolved(self, engine, clock):
        context = CycleContext(clock.now())
        eligible = [
            Identity(principal_id="1", principal_name="a@contoso.com"),
            Identity(principal_id="2", principal_name="A@Contoso.com"),
            Identity(principal_id="3", principal_name="b@contoso.com"),
            Identity(principal_id="4"),
            Identity(principal_id="5", principal_name="   "),
        ]

        delta = engine.compute_delta(eligible, ["B@contoso.com"], context)

        assert [i.principal_id for i in delta] == ["1"]
        assert context.identified == 1
        assert context.skipped_unresolved == 2

    def test_unresolved_identity_is_counted_and_logged(self, engine, engine_config, directory):
        directory.add_user("id-orphan", None, enabled=False, scope=SCOPE)

        summary = engine.run_cycle()

        assert summary.identified == 2
        assert summary.skipped_unresolved == 1
        assert summary.error_count == 0
        skipped = [e for e in action_log(engine_config.log_dir).read() if e.action == "skipped_unresolved"]
        assert skipped[0].detail["principal_id"] == "id-orphan"

    def test_identities_outside_scope_are_ignored(self, engine, directory, tracked):
        directory.add_user("id-active", "active@contoso.com", enabled=True, scope=SCOPE)
        directory.add_user("id-elsewhere", "elsewhere@contoso.com", enabled=False, scope="au-other")

        engine.run_cycle()

        assert tracked.load() == [JSMITH, MJONES]


class TestFailureSemantics:
    """Fatal errors abort the cycle; recoverable ones are counted."""

    def test_eligible_source_outage_mutates_nothing(self, engine, engine_config, directory, tracked, clock):
        engine.run_cycle()
        before = engine_config.tracked_set_path.read_text()
        hold_license(directory, "id-jsmith")
        clock.advance(hours=13)

        with patch.object(directory, "list_disabled_identities",
                          side_effect=CollaboratorUnavailable("directory", "timeout")):
            with pytest.raises(CollaboratorUnavailable):
                engine.run_cycle()

        assert engine_config.tracked_set_path.read_text() == before
        assert error_log(engine_config.log_dir).read() == []

    def test_unexpected_source_error_is_reported_as_unavailable(self, engine, directory):
        with patch.object(directory, "list_disabled_identities", side_effect=RuntimeError("boom")):
            with pytest.raises(CollaboratorUnavailable, match="boom"):
                engine.run_cycle()

    def test_phase_completion_outage_is_fatal(self, engine, directory, tracked):
        tracked.save([MJONES])

        with patch.object(directory, "get_group_members",
                          side_effect=CollaboratorUnavailable("license-groups")):
            with pytest.raises(CollaboratorUnavailable):
                engine.run_cycle()

        assert tracked.load() == [MJONES]
        assert directory.holds == {}

    def test_failed_hold_is_recorded_and_retried(self, engine, directory, tracked):
        def refuse_jsmith(principal_name, duration_days):
            if principal_name == JSMITH:
                return ConnectorResult(False, "Set-Mailbox failed", error="mailbox is inactive")
            return ConnectorResult(True, "ok")

        with patch.object(directory, "apply_litigation_hold", side_effect=refuse_jsmith):
            summary = engine.run_cycle()

        assert summary.identified == 2
        assert summary.applied == 1
        assert summary.failed == 1
        assert summary.error_count == 1
        assert tracked.load() == [MJONES]

        retry = engine.run_cycle()
        assert retry.identified == 1
        assert retry.applied == 1

    def test_outage_mid_application_leaves_valid_prefix(self, engine, engine_config, directory, tracked):
        outcomes = [ConnectorResult(True, "ok"), CollaboratorUnavailable("exchange", "throttled")]

        with patch.object(directory, "apply_litigation_hold", side_effect=outcomes):
            with pytest.raises(CollaboratorUnavailable):
                engine.run_cycle()

        assert tracked.load() == [JSMITH]
        assert set(ReclamationScheduler(engine_config.resolved_schedule_path).load()) == {JSMITH}

        resumed = engine.run_cycle()
        assert resumed.identified == 1
        assert tracked.load() == [JSMITH, MJONES]

    def test_second_runner_is_rejected(self, engine, engine_config, tracked):
        with StateLock(engine_config.tracked_set_path):
            with pytest.raises(StateLockError):
                engine.run_cycle()

        assert tracked.load() == []


class TestCycleProperties:
    """Properties that hold across consecutive cycles."""

    def test_tracked_set_only_shrinks_by_evictions(self, engine, directory, tracked, clock):
        engine.run_cycle()
        before = {n.lower() for n in tracked.load()}

        directory.add_user("id-alee", "alee@contoso.com", enabled=False, scope=SCOPE)
        hold_license(directory, "id-jsmith")
        clock.advance(hours=13)
        summary = engine.run_cycle()

        after = {n.lower() for n in tracked.load()}
        assert after == (before - {e.lower() for e in summary.evicted}) | {"alee@contoso.com"}

    def test_duplicate_principal_names_are_applied_once(self, engine, directory, tracked):
        directory.add_user("id-dup", "JSmith@Contoso.com", enabled=False, scope=SCOPE)

        summary = engine.run_cycle()

        assert summary.identified == 2
        assert summary.applied == 2
        assert len(tracked.load()) == 2

    def test_delta_never_contains_pre_cycle_tracked_names(self, engine, directory, tracked, clock):
        engine.run_cycle()
        pre_cycle = tracked.load()
        clock.advance(hours=13)
        hold_license(directory, "id-mjones")

        context = CycleContext(clock.now())
        delta = engine.compute_delta(directory.list_disabled_identities(SCOPE), pre_cycle, context)

        assert {i.key for i in delta}.isdisjoint({n.lower() for n in pre_cycle})
