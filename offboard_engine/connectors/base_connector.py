"""
Base Connector Classes for the Offboard Engine.

This module defines the capabilities the engine needs from the directory,
mailbox and licensing systems, with both a real API implementation
(graph_connector) and an in-memory simulated backend.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models import GroupGrant, Identity

logger = logging.getLogger(__name__)


class ConnectorResult:
    """Result of a connector operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"


class BaseConnector(ABC):
    """
    Abstract base class for directory connectors.

    Query methods raise CollaboratorUnavailable when the system cannot be
    reached. Action methods report per-call failures through
    ConnectorResult and must be idempotent.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the connector.

        Args:
            config: Configuration dictionary with tenant, endpoints, etc.
            mock_mode: If True, use the simulated backend instead of real APIs
        """
        self.config = config or {}
        self.mock_mode = mock_mode
        self.system_name = self.__class__.__name__.replace('Connector', '').lower()

        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    # Eligible source and phase completion queries

    @abstractmethod
    def list_disabled_identities(self, scope: str) -> List[Identity]:
        """
        List disabled identities in a scope.

        Args:
            scope: Directory scope (OU or administrative unit)

        Returns:
            Identities in no particular order; principal_name may be missing
        """

    @abstractmethod
    def get_group_members(self, group_ids: Iterable[str]) -> List[Identity]:
        """
        Get the combined membership of a set of groups.

        Args:
            group_ids: Group identifiers (e.g. license assignment groups)

        Returns:
            Identities that are a member of at least one group
        """

    # Phase action

    @abstractmethod
    def apply_litigation_hold(self, principal_name: str, duration_days: int) -> ConnectorResult:
        """
        Place a mailbox on litigation hold.

        Args:
            principal_name: Mailbox owner
            duration_days: Hold duration

        Returns:
            ConnectorResult with success status
        """

    # Access revocation

    @abstractmethod
    def get_user(self, principal_name: str) -> ConnectorResult:
        """Look up a user; data is an Identity when found."""

    @abstractmethod
    def revoke_sign_in(self, principal_id: str) -> ConnectorResult:
        """Block sign-in and revoke active sessions."""

    @abstractmethod
    def rotate_password(self, principal_id: str, password: str) -> ConnectorResult:
        """Replace the account password."""

    @abstractmethod
    def list_group_memberships(self, principal_id: str) -> ConnectorResult:
        """List groups the user belongs to; data is a list of GroupGrant."""

    @abstractmethod
    def list_calendar_permissions(self, principal_name: str) -> ConnectorResult:
        """List calendar permissions the user holds on other mailboxes; data is a list of dicts."""

    @abstractmethod
    def remove_from_group(self, principal_id: str, group_id: str) -> ConnectorResult:
        """Remove the user from a group."""

    @abstractmethod
    def revoke_calendar_permission(self, principal_name: str, permission: Dict[str, Any]) -> ConnectorResult:
        """Remove one calendar permission previously listed."""

    @abstractmethod
    def move_to_scope(self, principal_id: str, scope: str) -> ConnectorResult:
        """Relocate the user into a quarantine scope."""

    def get_system_name(self) -> str:
        """Get the name of the system this connector manages."""
        return self.system_name

    def is_mock_mode(self) -> bool:
        """Check if this connector is running in mock mode."""
        return self.mock_mode


class MockConnector(BaseConnector):
    """
    Simulated directory backend.

    Holds users, groups and calendar permissions in memory. Used for tests
    and for simulation mode, where it is seeded with fixed fixtures.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config, mock_mode=True)

        self.users: Dict[str, Dict[str, Any]] = {}  # principal_id -> user state
        self.groups: Dict[str, Dict[str, Any]] = {}  # group_id -> group state
        self.calendar_permissions: Dict[str, List[Dict[str, Any]]] = {}  # principal_name -> grants
        self.holds: Dict[str, int] = {}  # principal_name -> duration_days

    # Seeding helpers

    def add_user(self, principal_id: str, principal_name: Optional[str], enabled: bool = True,
                 scope: str = "", display_name: Optional[str] = None) -> Dict[str, Any]:
        user = {
            "principal_id": principal_id,
            "principal_name": principal_name,
            "display_name": display_name or principal_name or principal_id,
            "enabled": enabled,
            "scope": scope,
            "password_rotations": 0,
            "sessions_revoked": False,
        }
        self.users[principal_id] = user
        return user

    def add_group(self, group_id: str, display_name: str = "", mail_enabled: bool = False,
                  security_enabled: bool = True, members: Iterable[str] = ()) -> Dict[str, Any]:
        group = {
            "display_name": display_name or group_id,
            "mail_enabled": mail_enabled,
            "security_enabled": security_enabled,
            "members": set(members),
        }
        self.groups[group_id] = group
        return group

    def grant_calendar_permission(self, principal_name: str, permission: Dict[str, Any]) -> None:
        self.calendar_permissions.setdefault(principal_name.lower(), []).append(permission)

    def _to_identity(self, user: Dict[str, Any]) -> Identity:
        return Identity(
            principal_id=user["principal_id"],
            principal_name=user["principal_name"],
            display_name=user["display_name"],
        )

    # Queries

    def list_disabled_identities(self, scope: str) -> List[Identity]:
        return [
            self._to_identity(u) for u in self.users.values()
            if not u["enabled"] and u["scope"] == scope
        ]

    def get_group_members(self, group_ids: Iterable[str]) -> List[Identity]:
        member_ids: Set[str] = set()
        for group_id in group_ids:
            group = self.groups.get(group_id)
            if group:
                member_ids.update(group["members"])
        return [self._to_identity(self.users[m]) for m in sorted(member_ids) if m in self.users]

    # Phase action

    def apply_litigation_hold(self, principal_name: str, duration_days: int) -> ConnectorResult:
        if self._find_by_name(principal_name) is None:
            return ConnectorResult(False, f"Mailbox {principal_name} not found",
                                   error="mailbox not found")
        self.holds[principal_name.lower()] = duration_days
        logger.info(f"Mock applied litigation hold to {principal_name} ({duration_days} days)")
        return ConnectorResult(True, f"Litigation hold enabled for {principal_name}")

    # Access revocation

    def get_user(self, principal_name: str) -> ConnectorResult:
        user = self._find_by_name(principal_name)
        if user is None:
            return ConnectorResult(False, f"User {principal_name} not found", error="user not found")
        return ConnectorResult(True, f"Found user {principal_name}", self._to_identity(user))

    def revoke_sign_in(self, principal_id: str) -> ConnectorResult:
        user = self.users.get(principal_id)
        if user is None:
            return ConnectorResult(False, f"User {principal_id} not found", error="user not found")
        user["enabled"] = False
        user["sessions_revoked"] = True
        return ConnectorResult(True, f"Blocked sign-in for {principal_id}")

    def rotate_password(self, principal_id: str, password: str) -> ConnectorResult:
        user = self.users.get(principal_id)
        if user is None:
            return ConnectorResult(False, f"User {principal_id} not found", error="user not found")
        user["password_rotations"] += 1
        return ConnectorResult(True, f"Rotated password for {principal_id}")

    def list_group_memberships(self, principal_id: str) -> ConnectorResult:
        if principal_id not in self.users:
            return ConnectorResult(False, f"User {principal_id} not found", error="user not found")
        grants = [
            GroupGrant(
                group_id=group_id,
                display_name=group["display_name"],
                mail_enabled=group["mail_enabled"],
                security_enabled=group["security_enabled"],
            )
            for group_id, group in sorted(self.groups.items())
            if principal_id in group["members"]
        ]
        return ConnectorResult(True, f"{len(grants)} groups for {principal_id}", grants)

    def list_calendar_permissions(self, principal_name: str) -> ConnectorResult:
        grants = [dict(p) for p in self.calendar_permissions.get(principal_name.lower(), [])]
        return ConnectorResult(True, f"{len(grants)} calendar permissions for {principal_name}", grants)

    def remove_from_group(self, principal_id: str, group_id: str) -> ConnectorResult:
        group = self.groups.get(group_id)
        if group is None:
            return ConnectorResult(False, f"Group {group_id} not found", error="group not found")
        group["members"].discard(principal_id)
        return ConnectorResult(True, f"Removed {principal_id} from {group_id}")

    def revoke_calendar_permission(self, principal_name: str, permission: Dict[str, Any]) -> ConnectorResult:
        grants = self.calendar_permissions.get(principal_name.lower(), [])
        remaining = [p for p in grants if p.get("folder") != permission.get("folder")]
        self.calendar_permissions[principal_name.lower()] = remaining
        return ConnectorResult(True, f"Revoked {principal_name} on {permission.get('folder')}")

    def move_to_scope(self, principal_id: str, scope: str) -> ConnectorResult:
        user = self.users.get(principal_id)
        if user is None:
            return ConnectorResult(False, f"User {principal_id} not found", error="user not found")
        user["scope"] = scope
        return ConnectorResult(True, f"Moved {principal_id} to {scope}")

    def _find_by_name(self, principal_name: str) -> Optional[Dict[str, Any]]:
        for user in self.users.values():
            if user["principal_name"] and user["principal_name"].lower() == principal_name.lower():
                return user
        return None

    @classmethod
    def with_fixtures(cls, eligibility_scope: str, license_group_ids: Iterable[str] = ()) -> "MockConnector":
        """
        Build the fixed fixture directory used in simulation mode.

        Two disabled identities sit in the eligibility scope, one of them
        still in the license groups, plus one disabled object with no
        principal name. Two active users exist for disable runs.
        """
        connector = cls({"simulation": True})
        connector.add_user("sim-0001", "jsmith@contoso.com", enabled=False, scope=eligibility_scope,
                           display_name="John Smith")
        connector.add_user("sim-0002", "mjones@contoso.com", enabled=False, scope=eligibility_scope,
                           display_name="Mary Jones")
        connector.add_user("sim-0003", None, enabled=False, scope=eligibility_scope,
                           display_name="Orphaned Object")
        connector.add_user("sim-0004", "alee@contoso.com", enabled=True, display_name="Alex Lee")
        connector.add_user("sim-0005", "pkim@contoso.com", enabled=True, display_name="Pat Kim")

        for group_id in license_group_ids:
            connector.add_group(group_id, display_name=f"License {group_id}", members=["sim-0002", "sim-0004"])
        connector.add_group("grp-mfa", display_name="MFA Enforced", members=["sim-0004", "sim-0005"])
        connector.add_group("grp-all-staff", display_name="All Staff", mail_enabled=True,
                            security_enabled=False, members=["sim-0004", "sim-0005"])
        connector.grant_calendar_permission("alee@contoso.com", {
            "folder": "pkim@contoso.com:\\Calendar",
            "access_rights": ["Editor"],
            "sharing": {"delegate": True, "flags": {"can_view_private": False}},
        })

        return connector

