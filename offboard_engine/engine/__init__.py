"""
Engine Package for the Offboard Engine.

Reconciliation cycle, tracked set persistence and the deferred reclamation
trigger.
"""

from .reconciler import CycleContext, ReconciliationEngine
from .scheduler import FrozenClock, ReclamationScheduler, ScheduledReclaim, SystemClock
from .tracked_set import TrackedSetStore

__all__ = [
    "CycleContext",
    "FrozenClock",
    "ReclamationScheduler",
    "ReconciliationEngine",
    "ScheduledReclaim",
    "SystemClock",
    "TrackedSetStore",
]
