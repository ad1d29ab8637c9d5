"""
Workflows Package for the Offboard Engine.

This package provides the disable sequence run for each departing identity
and the delayed license reclamation phase.
"""

from .base_workflow import BaseWorkflow, WorkflowStep
from .disable import DisableWorkflow
from .helpers import create_disable_summary, generate_password, normalize_identifier
from .reclaim import ReclaimWorkflow

__all__ = [
    "BaseWorkflow",
    "WorkflowStep",
    "DisableWorkflow",
    "ReclaimWorkflow",
    "normalize_identifier",
    "generate_password",
    "create_disable_summary",
]
