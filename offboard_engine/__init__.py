"""
Offboard Engine

Employee offboarding automation for Entra ID and Exchange Online.

Disables departing accounts while snapshotting their prior access into an
audit trail, then runs a reconciliation loop that places disabled mailboxes
on litigation hold and verifies that their licenses are reclaimed,
re-queueing any identity whose reclamation never completed.
"""

__version__ = "1.0.0"
__author__ = "Offboard Engine Team"
__email__ = "team@example.com"

from .config import EngineConfig, load_config
from .engine.reconciler import ReconciliationEngine
from .workflows.disable import DisableWorkflow
from .workflows.reclaim import ReclaimWorkflow

__all__ = [
    "EngineConfig",
    "load_config",
    "ReconciliationEngine",
    "DisableWorkflow",
    "ReclaimWorkflow",
]
