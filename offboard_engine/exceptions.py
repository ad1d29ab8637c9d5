"""
Exception hierarchy for the Offboard Engine.

Fatal errors (configuration, unreachable collaborators, lock contention)
propagate to the caller and abort a cycle. Recoverable ones are caught by
the engine and written to the error log.
"""

from typing import Optional


class OffboardEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(OffboardEngineError):
    """A required option is missing or invalid."""


class CollaboratorUnavailable(OffboardEngineError):
    """An external system could not be reached."""

    def __init__(self, system: str, message: str = ""):
        self.system = system
        super().__init__(f"{system} unavailable: {message}" if message else f"{system} unavailable")


class StateLockError(OffboardEngineError):
    """Another runner holds the state lock."""


class VerificationFailure(OffboardEngineError):
    """A tracked identity has not actually completed the following phase."""

    def __init__(self, principal_name: str, reason: str):
        self.principal_name = principal_name
        self.reason = reason
        super().__init__(f"{principal_name}: {reason}")


class PerIdentityActionFailure(OffboardEngineError):
    """A single deprovisioning step failed for one identity."""

    def __init__(self, identifier: str, step: str, message: Optional[str] = None):
        self.identifier = identifier
        self.step = step
        super().__init__(f"{identifier} {step}: {message or 'failed'}")


class StateDocumentError(OffboardEngineError):
    """A persisted state document exists but cannot be parsed."""
