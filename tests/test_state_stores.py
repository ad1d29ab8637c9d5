"""
Tests for the persisted state documents.

Covers the tracked set, the reclamation schedule, the event logs, the
evidence store and the single-writer lock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from offboard_engine.audit import EvidenceStore, action_log, error_log
from offboard_engine.engine import FrozenClock, ReclamationScheduler, TrackedSetStore
from offboard_engine.exceptions import StateDocumentError, StateLockError
from offboard_engine.locking import StateLock, atomic_write_text, lock_path_for
from offboard_engine.models import ActionEntry, ErrorEntry


class TestTrackedSetStore:
    """Line-oriented tracked set document."""

    @pytest.fixture
    def store(self, tmp_path):
        return TrackedSetStore(tmp_path / "tracked.txt")

    def test_absent_document_is_empty(self, store):
        assert store.load() == []

    def test_blank_lines_and_repeats_are_ignored(self, store):
        store.path.write_text("a@contoso.com\n\n   \nB@contoso.com\nA@Contoso.com\n")

        assert store.load() == ["a@contoso.com", "B@contoso.com"]

    def test_append_is_set_like(self, store):
        assert store.append("jsmith@contoso.com") is True
        assert store.append("JSMITH@contoso.com") is False

        assert store.path.read_text() == "jsmith@contoso.com\n"

    def test_append_after_file_without_trailing_newline(self, store):
        store.path.write_text("a@contoso.com")

        store.append("b@contoso.com")

        assert store.path.read_text() == "a@contoso.com\nb@contoso.com\n"

    def test_append_rejects_blank_names(self, store):
        with pytest.raises(ValueError):
            store.append("  ")

    def test_remove_returns_tracked_spelling(self, store):
        store.save(["MJones@contoso.com", "a@contoso.com"])

        removed = store.remove(["mjones@contoso.com"])

        assert removed == ["MJones@contoso.com"]
        assert store.load() == ["a@contoso.com"]

    def test_remove_of_untracked_name_leaves_document_alone(self, store):
        store.save(["a@contoso.com"])
        mtime = store.path.stat().st_mtime_ns

        assert store.remove(["nobody@contoso.com"]) == []
        assert store.path.stat().st_mtime_ns == mtime

    def test_contains_ignores_case(self, store):
        store.append("a@contoso.com")

        assert store.contains("A@CONTOSO.COM")
        assert not store.contains("b@contoso.com")


class TestReclamationScheduler:
    """Deferred reclamation trigger."""

    @pytest.fixture
    def clock(self):
        return FrozenClock(datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc))

    @pytest.fixture
    def scheduler(self, tmp_path, clock):
        return ReclamationScheduler(tmp_path / "schedule.json", clock=clock)

    def test_schedule_sets_due_time_from_clock(self, scheduler, clock):
        entry = scheduler.schedule("JSmith@contoso.com", timedelta(hours=12))

        assert entry.scheduled_at == clock.now()
        assert entry.due_at == clock.now() + timedelta(hours=12)
        assert "jsmith@contoso.com" in scheduler.load()

    def test_pending_until_due(self, scheduler, clock):
        entry = scheduler.schedule("jsmith@contoso.com", timedelta(hours=12))

        assert entry.is_pending(clock.now())
        assert scheduler.due() == []

        clock.advance(hours=12)

        assert not entry.is_pending(clock.now())
        assert [e.principal_name for e in scheduler.due()] == ["jsmith@contoso.com"]

    def test_clear_ignores_unscheduled_names(self, scheduler):
        scheduler.schedule("jsmith@contoso.com", timedelta(hours=12))

        scheduler.clear(["nobody@contoso.com", "JSmith@Contoso.com"])

        assert scheduler.load() == {}

    def test_due_is_ordered_by_due_time(self, scheduler, clock):
        scheduler.schedule("late@contoso.com", timedelta(hours=6))
        scheduler.schedule("early@contoso.com", timedelta(hours=1))

        due = scheduler.due(clock.now() + timedelta(days=1))

        assert [e.principal_name for e in due] == ["early@contoso.com", "late@contoso.com"]

    def test_clear_removes_entries(self, scheduler):
        scheduler.schedule("a@contoso.com", timedelta(hours=1))
        scheduler.schedule("b@contoso.com", timedelta(hours=1))

        scheduler.clear(["A@contoso.com"])

        assert set(scheduler.load()) == {"b@contoso.com"}

    def test_corrupt_schedule_raises(self, scheduler):
        scheduler.path.write_text("{not json")

        with pytest.raises(StateDocumentError):
            scheduler.load()


class TestEventLog:
    """JSON-lines action and error logs."""

    def test_one_line_per_event(self, tmp_path):
        log = action_log(tmp_path)
        log.append(ActionEntry(principal_name="a@contoso.com", action="litigation_hold"))
        log.append(ActionEntry(principal_name="b@contoso.com", action="litigation_hold"))

        lines = (tmp_path / "actions.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert [e.principal_name for e in log.read()] == ["a@contoso.com", "b@contoso.com"]

    def test_malformed_lines_are_skipped(self, tmp_path):
        log = error_log(tmp_path)
        log.append(ErrorEntry(principal_name="a@contoso.com", reason="still licensed"))
        with open(log.path, "a") as f:
            f.write("{truncated\n")
        log.append(ErrorEntry(principal_name="b@contoso.com", reason="still licensed"))

        assert [e.principal_name for e in log.read()] == ["a@contoso.com", "b@contoso.com"]

    def test_since_and_limit(self, tmp_path):
        log = error_log(tmp_path)
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for day in range(5):
            log.append(ErrorEntry(timestamp=base + timedelta(days=day),
                                  principal_name=f"u{day}@contoso.com", reason="x"))

        recent = log.read(since=base + timedelta(days=2))
        assert [e.principal_name for e in recent] == ["u2@contoso.com", "u3@contoso.com", "u4@contoso.com"]
        assert [e.principal_name for e in log.read(limit=1)] == ["u4@contoso.com"]

    def test_naive_since_is_taken_as_utc(self, tmp_path):
        log = error_log(tmp_path)
        log.append(ErrorEntry(timestamp=datetime(2026, 1, 1, 23, 0, tzinfo=timezone.utc),
                              principal_name="late@contoso.com", reason="x"))
        log.append(ErrorEntry(timestamp=datetime(2026, 1, 2, 1, 0, tzinfo=timezone.utc),
                              principal_name="next@contoso.com", reason="x"))

        recent = log.read(since=datetime(2026, 1, 2))

        assert [e.principal_name for e in recent] == ["next@contoso.com"]


class TestEvidenceStore:
    """Snapshot backup files."""

    def test_snapshot_round_trips_nested_data(self, tmp_path):
        store = EvidenceStore(tmp_path / "backups")
        taken_at = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)
        snapshot = {"calendar_permissions": [{"folder": "x", "sharing": {"flags": {"private": False}}}]}

        path = store.store_snapshot("jsmith", snapshot, taken_at)

        assert "2026/01/jsmith" in path.replace("\\", "/")
        assert store.retrieve_snapshot(path) == snapshot

    def test_missing_snapshot_returns_none(self, tmp_path):
        assert EvidenceStore(tmp_path).retrieve_snapshot(str(tmp_path / "nope.json")) is None


class TestStateLock:
    """Single-writer lock."""

    def test_second_holder_is_rejected(self, tmp_path):
        document = tmp_path / "tracked.txt"

        with StateLock(document) as lock:
            assert lock.held
            with pytest.raises(StateLockError):
                StateLock(document).acquire()

    def test_lock_is_released_on_exit(self, tmp_path):
        document = tmp_path / "tracked.txt"

        with StateLock(document):
            pass

        with StateLock(document) as again:
            assert again.held

    def test_lock_file_is_a_sidecar(self, tmp_path):
        assert lock_path_for(tmp_path / "trail.json") == tmp_path / "trail.json.lock"

    def test_atomic_write_replaces_document(self, tmp_path):
        target = tmp_path / "nested" / "doc.json"

        atomic_write_text(target, "[]")
        atomic_write_text(target, "[1]")

        assert target.read_text() == "[1]"
        assert not (tmp_path / "nested" / "doc.json.tmp").exists()
