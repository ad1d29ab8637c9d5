"""
Deferred reclamation trigger for the Offboard Engine.

License reclamation runs some hours after the hold is applied, outside the
reconciliation cycle. The scheduler records when each held principal
becomes due; the reconciliation cycle only verifies principals that are due,
and the reclaim run only processes principals that are due. Time comes from
an injectable clock so the delay can be exercised without waiting.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

from ..exceptions import StateDocumentError
from ..locking import atomic_write_text

logger = logging.getLogger(__name__)


class SystemClock:
    """Wall clock, always UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 1, 15, 2, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


class ScheduledReclaim(BaseModel):
    """One pending reclamation."""
    principal_name: str
    scheduled_at: datetime
    due_at: datetime

    def is_pending(self, now: datetime) -> bool:
        """True while the reclamation is not yet due at ``now``."""
        return self.due_at > now


class ReclamationScheduler:
    """
    Persisted map of principal name to reclamation due time.

    The document is a JSON object keyed by lower-cased principal name.
    """

    def __init__(self, path: Union[str, Path], clock=None):
        """
        Initialize the scheduler.

        Args:
            path: JSON document holding scheduled reclamations
            clock: Object with a ``now()`` method; defaults to SystemClock
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock or SystemClock()

    def load(self) -> Dict[str, ScheduledReclaim]:
        if not self.path.exists():
            return {}

        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}

        try:
            data = json.loads(text)
            return {key: ScheduledReclaim(**value) for key, value in data.items()}
        except (json.JSONDecodeError, AttributeError, TypeError, ValidationError) as e:
            raise StateDocumentError(f"Reclamation schedule {self.path} is unreadable: {e}") from e

    def schedule(self, principal_name: str, delay: timedelta) -> ScheduledReclaim:
        """
        Schedule (or reschedule) reclamation for a principal.

        Args:
            principal_name: Principal whose licenses should be reclaimed
            delay: How long after now reclamation becomes due

        Returns:
            The stored schedule entry
        """
        now = self.clock.now()
        entry = ScheduledReclaim(principal_name=principal_name, scheduled_at=now, due_at=now + delay)

        entries = self.load()
        entries[principal_name.lower()] = entry
        self._save(entries)

        logger.info(f"Scheduled license reclamation for {principal_name} at {entry.due_at.isoformat()}")
        return entry

    def due(self, now: Optional[datetime] = None) -> List[ScheduledReclaim]:
        """Scheduled reclamations whose due time has passed, earliest first."""
        now = now or self.clock.now()
        entries = [e for e in self.load().values() if not e.is_pending(now)]
        return sorted(entries, key=lambda e: e.due_at)

    def clear(self, principal_names: Iterable[str]) -> None:
        """Drop schedule entries for reclaimed or evicted principals."""
        entries = self.load()
        changed = False
        for name in principal_names:
            if entries.pop(name.lower(), None) is not None:
                changed = True
        if changed:
            self._save(entries)

    def _save(self, entries: Dict[str, ScheduledReclaim]) -> None:
        payload = {key: entry.model_dump(mode="json") for key, entry in entries.items()}
        atomic_write_text(self.path, json.dumps(payload, indent=2))
