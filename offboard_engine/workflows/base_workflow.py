"""
Base Workflow Classes for the Offboard Engine.

This module provides the foundation for the disable and reclaim workflows
with common functionality for running connector operations step by step,
best-effort, with every outcome recorded.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..audit.event_log import action_log, error_log
from ..config import EngineConfig
from ..connectors import BaseConnector, ConnectorResult, build_connector
from ..engine.scheduler import SystemClock
from ..models import ActionEntry, ErrorEntry

logger = logging.getLogger(__name__)


class WorkflowStep:
    """Represents a single step in a workflow execution."""

    def __init__(
        self,
        operation: str,
        resource: str = "",
        parameters: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.resource = resource
        self.parameters = parameters or {}
        self.executed_at: Optional[datetime] = None
        self.success: bool = False
        self.error: Optional[str] = None
        self.result: Optional[Any] = None

    def mark_success(self, result: Any = None):
        """Mark step as successful."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = True
        self.result = result

    def mark_failure(self, error: str):
        """Mark step as failed."""
        self.executed_at = datetime.now(timezone.utc)
        self.success = False
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert step to dictionary for serialization."""
        return {
            "operation": self.operation,
            "resource": self.resource,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "success": self.success,
            "error": self.error,
        }


class BaseWorkflow(ABC):
    """
    Abstract base class for offboarding workflows.

    Steps run independently: a failed step is recorded and logged, and the
    workflow moves on to the next one.
    """

    # Connector operations a step may name
    OPERATIONS = (
        "get_user",
        "revoke_sign_in",
        "rotate_password",
        "list_group_memberships",
        "list_calendar_permissions",
        "remove_from_group",
        "revoke_calendar_permission",
        "move_to_scope",
    )

    def __init__(self, config: EngineConfig, connector: Optional[BaseConnector] = None, clock=None):
        """
        Initialize the workflow.

        Args:
            config: Engine configuration
            connector: Directory connector; built from config when omitted
            clock: Object with a ``now()`` method; defaults to SystemClock
        """
        self.config = config
        self.workflow_id = str(uuid.uuid4())
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.steps: List[WorkflowStep] = []
        self.errors: List[str] = []

        self.clock = clock or SystemClock()
        self.connector = connector or build_connector(config)
        self.action_log = action_log(config.log_dir)
        self.error_log = error_log(config.log_dir)

        logger.info(f"Initialized {self.__class__.__name__} workflow {self.workflow_id}")

    @abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """Execute the workflow."""

    def _execute_step(self, step: WorkflowStep) -> bool:
        """
        Execute a single workflow step.

        Args:
            step: The step to execute

        Returns:
            True if successful, False otherwise
        """
        self.steps.append(step)

        if step.operation not in self.OPERATIONS:
            error_msg = f"Unknown operation: {step.operation}"
            step.mark_failure(error_msg)
            self.errors.append(error_msg)
            return False

        try:
            method = getattr(self.connector, step.operation)
            result: ConnectorResult = method(**step.parameters)

            if result.success:
                step.mark_success(result.data)
                logger.info(f"Step completed: {step.operation}({step.resource})")
                return True

            step.mark_failure(result.error or result.message or "Unknown error")
            self.errors.append(f"{step.operation}({step.resource}): {step.error}")
            logger.error(f"Step failed: {step.operation}({step.resource}): {step.error}")
            return False

        except Exception as e:
            error_msg = f"Exception during {step.operation}({step.resource}): {e}"
            step.mark_failure(error_msg)
            self.errors.append(error_msg)
            logger.error(error_msg)
            return False

    def _log_action(self, principal_name: str, action: str, **detail: Any) -> None:
        self.action_log.append(ActionEntry(principal_name=principal_name, action=action, detail=detail))

    def _log_error(self, principal_name: str, reason: str, kind: str) -> None:
        self.error_log.append(ErrorEntry(principal_name=principal_name, reason=reason, kind=kind))
