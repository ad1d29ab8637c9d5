"""
Tracked Set Store for the Offboard Engine.

Persists the principal names that have passed a phase (hold applied,
reclamation pending) as a line-oriented document. Appends are durable one
line at a time; removals rewrite the whole document in one step.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..locking import atomic_write_text

logger = logging.getLogger(__name__)


def _key(name: str) -> str:
    return name.strip().lower()


class TrackedSetStore:
    """
    Append-only set of principal names backed by a text file.

    Names compare case-insensitively and keep the spelling first written.
    Callers hold the engine's StateLock while mutating the store.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the tracked set store.

        Args:
            path: Text file with one principal name per line
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._names: Optional[List[str]] = None

    def load(self) -> List[str]:
        """
        Load tracked names in insertion order.

        Blank lines are ignored and repeated names are collapsed.
        """
        names: List[str] = []
        seen = set()

        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                for line in f:
                    name = line.strip()
                    if not name or _key(name) in seen:
                        continue
                    seen.add(_key(name))
                    names.append(name)

        self._names = names
        logger.debug(f"Loaded {len(names)} tracked names from {self.path}")
        return list(names)

    def contains(self, name: str) -> bool:
        return _key(name) in {_key(n) for n in self._current()}

    def append(self, name: str) -> bool:
        """
        Durably append one name.

        Args:
            name: Principal name to track

        Returns:
            True if appended, False if it was already tracked
        """
        if not name or not name.strip():
            raise ValueError("Cannot track a blank principal name")

        name = name.strip()
        if self.contains(name):
            logger.debug(f"{name} already tracked")
            return False

        needs_newline = False
        if self.path.exists() and self.path.stat().st_size > 0:
            with open(self.path, "rb") as f:
                f.seek(-1, os.SEEK_END)
                needs_newline = f.read(1) != b"\n"

        with open(self.path, "a", encoding="utf-8") as f:
            f.write(("\n" if needs_newline else "") + name + "\n")
            f.flush()
            os.fsync(f.fileno())

        self._current().append(name)
        return True

    def remove(self, names: Iterable[str]) -> List[str]:
        """
        Remove names and rewrite the document.

        Args:
            names: Principal names to evict

        Returns:
            The tracked spellings that were actually removed
        """
        evict = {_key(n) for n in names}
        current = self._current()
        removed = [n for n in current if _key(n) in evict]
        if not removed:
            return []

        self.save([n for n in current if _key(n) not in evict])
        logger.info(f"Removed {len(removed)} names from tracked set {self.path}")
        return removed

    def save(self, names: Iterable[str]) -> None:
        """Replace the whole document with ``names`` (deduplicated, order kept)."""
        unique: List[str] = []
        seen = set()
        for name in names:
            if not name or not name.strip() or _key(name) in seen:
                continue
            seen.add(_key(name))
            unique.append(name.strip())

        atomic_write_text(self.path, "".join(f"{n}\n" for n in unique))
        self._names = unique

    def _current(self) -> List[str]:
        if self._names is None:
            self.load()
        return self._names
