"""
Audit Trail Store.

Keeps every disable event for every identity in one JSON document. The
record without a suffix is the current one for its identifier; when the
same identifier is disabled again, the previous current record is renamed
with a suffix taken from its own timestamp, so history is never lost.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Set, Union

from pydantic import ValidationError

from ..exceptions import StateDocumentError
from ..locking import StateLock, atomic_write_text
from ..models import AuditRecord

logger = logging.getLogger(__name__)

SUFFIX_DATE_FORMAT = "%m-%d-%Y"


def superseded_identifier(user: str, timestamp: datetime, taken: Set[str]) -> str:
    """
    Name a superseded record after its own disable date.

    Args:
        user: Identifier the record is currently filed under
        timestamp: The record's own timestamp
        taken: Lower-cased identifiers already present in the trail

    Returns:
        ``user_MM-DD-YYYY``, with ``_2``, ``_3``... appended if that is taken
    """
    base = f"{user}_{timestamp.strftime(SUFFIX_DATE_FORMAT)}"
    candidate = base
    counter = 2
    while candidate.lower() in taken:
        candidate = f"{base}_{counter}"
        counter += 1
    return candidate


class AuditTrailStore:
    """
    Append/read access to the audit trail document.

    Writes rewrite the whole document through a temp file, under an
    exclusive lock, so readers never observe a partially written trail.
    """

    def __init__(self, path: Union[str, Path] = "audit/offboarded_users.json"):
        """
        Initialize the audit trail store.

        Args:
            path: Location of the JSON document
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load_all(self) -> List[AuditRecord]:
        """
        Load every record in document order.

        Returns:
            List of AuditRecords; empty when the document is absent or empty

        Raises:
            StateDocumentError: If the document exists but is not a valid trail
        """
        if not self.path.exists():
            return []

        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return []

        try:
            data = json.loads(text)
            # A trail holding one record may have been written as a bare object
            if isinstance(data, dict):
                data = [data]
            return [AuditRecord(**item) for item in data]
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise StateDocumentError(f"Audit trail {self.path} is unreadable: {e}") from e

    def append(self, record: AuditRecord) -> AuditRecord:
        """
        Append a record, superseding any current record for the same identifier.

        Args:
            record: New record, filed under the unsuffixed identifier

        Returns:
            The record as persisted
        """
        with StateLock(self.path):
            records = self.load_all()
            taken = {r.user.lower() for r in records}

            for index, existing in enumerate(records):
                if existing.user.lower() != record.user.lower():
                    continue
                renamed = superseded_identifier(existing.user, existing.timestamp, taken)
                taken.add(renamed.lower())
                records[index] = existing.model_copy(update={"user": renamed})
                logger.info(f"Superseded audit record {existing.user} -> {renamed}")

            records.append(record)
            self._save(records)

        logger.info(f"Appended audit record for {record.user} ({len(records)} records)")
        return record

    def current(self, user: str) -> Optional[AuditRecord]:
        """Get the current (unsuffixed) record for an identifier."""
        for record in self.load_all():
            if record.user.lower() == user.lower():
                return record
        return None

    def history(self, user: str) -> List[AuditRecord]:
        """Get every record for an identifier, superseded ones included, oldest first."""
        pattern = re.compile(rf"^{re.escape(user)}(_\d{{2}}-\d{{2}}-\d{{4}}(_\d+)?)?$", re.IGNORECASE)
        return [r for r in self.load_all() if pattern.match(r.user)]

    def _save(self, records: List[AuditRecord]) -> None:
        payload = [r.model_dump(mode="json") for r in records]
        atomic_write_text(self.path, json.dumps(payload, indent=2))
