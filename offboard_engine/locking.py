"""
Single-writer lock for persisted engine state.

State documents are read, modified and rewritten whole, so two runners
working the same documents would lose each other's updates. A runner
takes an exclusive, non-blocking lock on a sidecar ``.lock`` file and
fails fast when another runner already holds it.
"""

import fcntl
import logging
import os
from pathlib import Path
from typing import IO, Optional, Union

from .exceptions import StateLockError

logger = logging.getLogger(__name__)


def lock_path_for(document: Union[str, Path]) -> Path:
    """Sidecar lock file for a state document."""
    document = Path(document)
    return document.with_name(document.name + ".lock")


class StateLock:
    """
    Exclusive advisory lock guarding one state document.

    Usable as a context manager::

        with StateLock(config.tracked_set_path):
            ...
    """

    def __init__(self, document: Union[str, Path]):
        self.path = lock_path_for(document)
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            handle.close()
            raise StateLockError(f"State is locked by another runner: {self.path}") from e

        self._handle = handle
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._handle is None:
            return

        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> "StateLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def atomic_write_text(path: Union[str, Path], text: str) -> None:
    """Replace a document in one step so readers never see a partial write."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
