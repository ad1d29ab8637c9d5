"""
Evidence Store Module.

Writes the access snapshot taken before revocation to its own backup
file, so prior group memberships and permissions can be restored or
produced for an audit independently of the audit trail document.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class EvidenceStore:
    """
    Storage for per-identity access snapshots.

    Files are laid out as ``<storage_dir>/YYYY/MM/<user>/<user>_<stamp>.json``.
    """

    def __init__(self, storage_dir: Union[str, Path] = "backups"):
        """
        Initialize the evidence store.

        Args:
            storage_dir: Directory to store snapshot files
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def store_snapshot(self, user: str, snapshot: Dict[str, Any], taken_at: datetime) -> str:
        """
        Store a snapshot for one identity.

        Args:
            user: Normalized identifier the snapshot belongs to
            snapshot: Arbitrarily nested snapshot data
            taken_at: When the snapshot was captured

        Returns:
            Path of the stored file
        """
        target_dir = self.storage_dir / taken_at.strftime("%Y/%m") / user
        target_dir.mkdir(parents=True, exist_ok=True)

        target_path = target_dir / f"{user}_{taken_at.strftime('%Y%m%dT%H%M%S%f')}.json"
        with open(target_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, default=str)

        logger.info(f"Stored access snapshot for {user} at {target_path}")
        return str(target_path)

    def retrieve_snapshot(self, stored_path: str) -> Optional[Dict[str, Any]]:
        """
        Load a stored snapshot.

        Args:
            stored_path: Path returned by store_snapshot

        Returns:
            The snapshot data, or None if the file no longer exists
        """
        path = Path(stored_path)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)
