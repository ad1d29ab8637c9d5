"""
Microsoft Graph Connector for the Offboard Engine.

Provides integration with Microsoft Entra ID and Exchange Online through
Microsoft Graph and the Exchange Online admin REST endpoint, for account
disablement, group and calendar access removal, administrative unit
placement and mailbox litigation hold.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import requests
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential

from ..config import ConnectorSettings
from ..exceptions import CollaboratorUnavailable, ConfigurationError
from ..models import GroupGrant, Identity
from .base_connector import BaseConnector, ConnectorResult

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
EXCHANGE_URL = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPE = "https://outlook.office365.com/.default"

USER_FIELDS = "id,userPrincipalName,displayName,accountEnabled"


class GraphConnector(BaseConnector):
    """Entra ID / Exchange Online connector."""

    def __init__(self, settings: ConnectorSettings, session: Optional[requests.Session] = None,
                 credential: Optional[Any] = None):
        super().__init__(settings.model_dump(), mock_mode=False)

        if not settings.tenant_id or not settings.client_id:
            raise ConfigurationError("connector.tenant_id and connector.client_id are required")

        self.settings = settings
        self.tenant_id = settings.tenant_id
        self.timeout = settings.timeout_seconds
        self.session = session or requests.Session()

        if credential is None:
            secret = os.environ.get(settings.client_secret_env)
            if not secret:
                raise ConfigurationError(
                    f"Client secret environment variable {settings.client_secret_env} is not set"
                )
            credential = ClientSecretCredential(settings.tenant_id, settings.client_id, secret)
        self.credential = credential

    # Transport

    def _request(self, method: str, url: str, scope: str = GRAPH_SCOPE,
                 system: str = "graph", **kwargs) -> requests.Response:
        """
        Send an authenticated request.

        Raises:
            CollaboratorUnavailable: On transport errors, throttling or 5xx
        """
        try:
            token = self.credential.get_token(scope).token
        except ClientAuthenticationError as e:
            raise CollaboratorUnavailable(system, f"authentication failed: {e}") from e

        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise CollaboratorUnavailable(system, str(e)) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise CollaboratorUnavailable(system, f"HTTP {response.status_code} from {url}")
        return response

    def _get_all(self, url: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Follow @odata.nextLink paging and return every item."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        while next_url:
            response = self._request("GET", next_url, params=params)
            if response.status_code != 200:
                raise CollaboratorUnavailable("graph", f"HTTP {response.status_code} listing {url}")
            body = response.json()
            items.extend(body.get("value", []))
            next_url = body.get("@odata.nextLink")
            params = None  # nextLink already carries the query
        return items

    def _invoke_exchange(self, cmdlet: str, parameters: Dict[str, Any]) -> requests.Response:
        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters}}
        return self._request(
            "POST",
            f"{EXCHANGE_URL}/{self.tenant_id}/InvokeCommand",
            scope=EXCHANGE_SCOPE,
            system="exchange",
            json=body,
        )

    @staticmethod
    def _to_identity(item: Dict[str, Any]) -> Identity:
        return Identity(
            principal_id=item["id"],
            principal_name=item.get("userPrincipalName"),
            display_name=item.get("displayName"),
        )

    @staticmethod
    def _failure(action: str, response: requests.Response) -> ConnectorResult:
        error = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.error(f"Graph {action} failed: {error}")
        return ConnectorResult(False, f"{action} failed", error=error)

    # Queries

    def list_disabled_identities(self, scope: str) -> List[Identity]:
        items = self._get_all(
            f"{GRAPH_URL}/directory/administrativeUnits/{scope}/members/microsoft.graph.user",
            params={"$select": USER_FIELDS},
        )
        return [self._to_identity(i) for i in items if i.get("accountEnabled") is False]

    def get_group_members(self, group_ids: Iterable[str]) -> List[Identity]:
        members: Dict[str, Identity] = {}
        for group_id in group_ids:
            items = self._get_all(
                f"{GRAPH_URL}/groups/{group_id}/members/microsoft.graph.user",
                params={"$select": USER_FIELDS},
            )
            for item in items:
                members[item["id"]] = self._to_identity(item)
        return list(members.values())

    # Phase action

    def apply_litigation_hold(self, principal_name: str, duration_days: int) -> ConnectorResult:
        response = self._invoke_exchange("Set-Mailbox", {
            "Identity": principal_name,
            "LitigationHoldEnabled": True,
            "LitigationHoldDuration": duration_days,
        })
        if response.status_code != 200:
            return self._failure(f"Set-Mailbox {principal_name}", response)
        logger.info(f"Enabled litigation hold for {principal_name} ({duration_days} days)")
        return ConnectorResult(True, f"Litigation hold enabled for {principal_name}")

    # Access revocation

    def get_user(self, principal_name: str) -> ConnectorResult:
        response = self._request("GET", f"{GRAPH_URL}/users/{principal_name}", params={"$select": USER_FIELDS})
        if response.status_code == 404:
            return ConnectorResult(False, f"User {principal_name} not found", error="user not found")
        if response.status_code != 200:
            return self._failure(f"get user {principal_name}", response)
        return ConnectorResult(True, f"Found user {principal_name}", self._to_identity(response.json()))

    def revoke_sign_in(self, principal_id: str) -> ConnectorResult:
        response = self._request("PATCH", f"{GRAPH_URL}/users/{principal_id}", json={"accountEnabled": False})
        if response.status_code != 204:
            return self._failure(f"disable {principal_id}", response)

        response = self._request("POST", f"{GRAPH_URL}/users/{principal_id}/revokeSignInSessions")
        if response.status_code != 200:
            return self._failure(f"revoke sessions {principal_id}", response)
        return ConnectorResult(True, f"Blocked sign-in for {principal_id}")

    def rotate_password(self, principal_id: str, password: str) -> ConnectorResult:
        response = self._request("PATCH", f"{GRAPH_URL}/users/{principal_id}", json={
            "passwordProfile": {"password": password, "forceChangePasswordNextSignIn": True},
        })
        if response.status_code != 204:
            return self._failure(f"reset password {principal_id}", response)
        return ConnectorResult(True, f"Rotated password for {principal_id}")

    def list_group_memberships(self, principal_id: str) -> ConnectorResult:
        items = self._get_all(
            f"{GRAPH_URL}/users/{principal_id}/memberOf/microsoft.graph.group",
            params={"$select": "id,displayName,mailEnabled,securityEnabled"},
        )
        grants = [
            GroupGrant(
                group_id=i["id"],
                display_name=i.get("displayName") or "",
                mail_enabled=bool(i.get("mailEnabled")),
                security_enabled=bool(i.get("securityEnabled")),
            )
            for i in items
        ]
        return ConnectorResult(True, f"{len(grants)} groups for {principal_id}", grants)

    def list_calendar_permissions(self, principal_name: str) -> ConnectorResult:
        permissions: List[Dict[str, Any]] = []
        for mailbox in self.settings.shared_calendar_mailboxes:
            response = self._request("GET", f"{GRAPH_URL}/users/{mailbox}/calendar/calendarPermissions")
            if response.status_code != 200:
                return self._failure(f"list calendar permissions on {mailbox}", response)
            for item in response.json().get("value", []):
                address = (item.get("emailAddress") or {}).get("address") or ""
                if address.lower() != principal_name.lower():
                    continue
                permissions.append({
                    "folder": f"{mailbox}:\\Calendar",
                    "mailbox": mailbox,
                    "permission_id": item["id"],
                    "role": item.get("role"),
                    "email_address": item.get("emailAddress"),
                    "allowed_roles": item.get("allowedRoles", []),
                })
        return ConnectorResult(True, f"{len(permissions)} calendar permissions for {principal_name}", permissions)

    def remove_from_group(self, principal_id: str, group_id: str) -> ConnectorResult:
        response = self._request("DELETE", f"{GRAPH_URL}/groups/{group_id}/members/{principal_id}/$ref")
        if response.status_code in (204, 404):
            return ConnectorResult(True, f"Removed {principal_id} from {group_id}")

        if response.status_code == 400:
            # Distribution lists and mail-enabled security groups are read-only in Graph
            response = self._invoke_exchange("Remove-DistributionGroupMember", {
                "Identity": group_id,
                "Member": principal_id,
                "BypassSecurityGroupManagerCheck": True,
                "Confirm": False,
            })
            if response.status_code == 200:
                return ConnectorResult(True, f"Removed {principal_id} from distribution group {group_id}")
        return self._failure(f"remove {principal_id} from {group_id}", response)

    def revoke_calendar_permission(self, principal_name: str, permission: Dict[str, Any]) -> ConnectorResult:
        mailbox = permission["mailbox"]
        response = self._request(
            "DELETE",
            f"{GRAPH_URL}/users/{mailbox}/calendar/calendarPermissions/{permission['permission_id']}",
        )
        if response.status_code not in (204, 404):
            return self._failure(f"revoke {principal_name} on {mailbox}", response)
        return ConnectorResult(True, f"Revoked {principal_name} on {permission['folder']}")

    def move_to_scope(self, principal_id: str, scope: str) -> ConnectorResult:
        response = self._request(
            "POST",
            f"{GRAPH_URL}/directory/administrativeUnits/{scope}/members/$ref",
            json={"@odata.id": f"{GRAPH_URL}/directoryObjects/{principal_id}"},
        )
        if response.status_code == 204:
            return ConnectorResult(True, f"Moved {principal_id} to {scope}")
        if response.status_code == 400 and "already exist" in response.text:
            return ConnectorResult(True, f"{principal_id} already in {scope}")
        return self._failure(f"move {principal_id} to {scope}", response)
