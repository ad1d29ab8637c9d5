"""
Workflow Helper Functions for the Offboard Engine.

Utility functions for identifier handling, credential generation and
workflow summaries.
"""

import logging
import secrets
import string
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 32
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()-_=+"


def normalize_identifier(raw: str, upn_domain: Optional[str] = None) -> Tuple[str, str]:
    """
    Normalize a user-supplied identifier.

    Args:
        raw: Account name (``jsmith``) or principal name (``jsmith@contoso.com``)
        upn_domain: Domain appended to bare account names

    Returns:
        Tuple of (user, principal_name), both lower-cased

    Raises:
        ValueError: If the identifier is blank or a bare name has no domain to join
    """
    identifier = (raw or "").strip().lower()
    if not identifier:
        raise ValueError("Identifier is required")

    if "@" in identifier:
        user, _, domain = identifier.partition("@")
        if not user or not domain:
            raise ValueError(f"Invalid principal name: {raw!r}")
        return user, identifier

    if not upn_domain:
        raise ValueError(f"Cannot resolve bare account name {identifier!r} without upn_domain")
    return identifier, f"{identifier}@{upn_domain.strip().lstrip('@').lower()}"


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """
    Generate a random credential that satisfies complexity rules.

    Args:
        length: Password length (minimum 16)

    Returns:
        Password with at least one lower, upper, digit and symbol
    """
    length = max(length, 16)
    while True:
        password = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        if (any(c.islower() for c in password)
                and any(c.isupper() for c in password)
                and any(c.isdigit() for c in password)
                and any(c in "!@#$%^&*()-_=+" for c in password)):
            return password


def create_disable_summary(outcome: Any) -> Dict[str, Any]:
    """
    Create a summary of one disable run for display or logging.

    Args:
        outcome: DisableOutcome object

    Returns:
        Dictionary with step counts and errors
    """
    successful = len([s for s in outcome.steps if s.get("success", False)])
    total = len(outcome.steps)

    return {
        "identifier": outcome.identifier,
        "user": outcome.record.user if outcome.record else None,
        "status": outcome.record.status.value if outcome.record else "NotRecorded",
        "total_steps": total,
        "successful_steps": successful,
        "failed_steps": total - successful,
        "error_count": len(outcome.errors),
        "errors": outcome.errors,
        "backup_path": outcome.record.backup_path if outcome.record else None,
    }
