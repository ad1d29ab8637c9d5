"""
Event Log Module.

Append-only JSON-lines logs for structured engine events: one file for
phase actions and one for errors. Each line is one timestamped event.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..models import ActionEntry, ErrorEntry

logger = logging.getLogger(__name__)

EntryT = TypeVar("EntryT", bound=BaseModel)

ACTION_LOG_NAME = "actions.jsonl"
ERROR_LOG_NAME = "errors.jsonl"


class EventLog(Generic[EntryT]):
    """
    Append-only log of one kind of event.

    Lines are flushed and synced as they are written; a crash can lose at
    most the line being written, never lines already appended.
    """

    def __init__(self, path: Union[str, Path], entry_type: Type[EntryT]):
        """
        Initialize the event log.

        Args:
            path: JSON-lines file to append to
            entry_type: Model each line is parsed into on read
        """
        self.path = Path(path)
        self.entry_type = entry_type
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, entry: EntryT) -> None:
        """Append one event as a single line."""
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.model_dump(mode="json")) + "\n")
            f.flush()
            os.fsync(f.fileno())

    def read(self, since: Optional[datetime] = None, limit: Optional[int] = None) -> List[EntryT]:
        """
        Read events, oldest first.

        Args:
            since: Only events at or after this time; naive values are taken to be UTC
            limit: Keep only the most recent ``limit`` events

        Returns:
            Parsed entries; malformed lines are skipped with a warning
        """
        if not self.path.exists():
            return []

        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        entries: List[EntryT] = []
        with open(self.path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entry = self.entry_type(**json.loads(line))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Skipping malformed line {line_number} in {self.path}: {e}")
                    continue

                if since and entry.timestamp < since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries


def action_log(log_dir: Union[str, Path]) -> EventLog[ActionEntry]:
    """Action log under ``log_dir``."""
    return EventLog(Path(log_dir) / ACTION_LOG_NAME, ActionEntry)


def error_log(log_dir: Union[str, Path]) -> EventLog[ErrorEntry]:
    """Error log under ``log_dir``."""
    return EventLog(Path(log_dir) / ERROR_LOG_NAME, ErrorEntry)
