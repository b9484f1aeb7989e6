"""
Application Permission Analyzer
Flattens service principal grants into one row per permission and flags
high-privilege application permissions, broad admin consent, and disabled
apps that still hold grants.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Optional

from .base import BaseAnalyzer
from ..config import HIGH_PRIVILEGE_PERMISSIONS

logger = logging.getLogger("directory_toolkit.analyzers.app")

DEFAULT_APP_ROLE_ID = "00000000-0000-0000-0000-000000000000"

# Permissions that allow an app to grant itself anything else
TENANT_TAKEOVER_PERMISSIONS = {
    "Application.ReadWrite.All",
    "AppRoleAssignment.ReadWrite.All",
    "RoleManagement.ReadWrite.Directory",
}

BROAD_SCOPE_MARKERS = ("ReadWrite", "FullControl", "full_access")

EVIDENCE_LIMIT = 15


@dataclass
class PermissionGrant:
    """One permission held by one client application."""
    client_id: str
    client_name: str
    client_app_id: str
    client_enabled: bool
    resource_id: str
    resource_name: str
    permission: str
    permission_type: str          # Application or Delegated
    consent_type: str             # AdminConsent, AllPrincipals, Principal
    principal: str = ""
    granted: str = ""
    high_privilege: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def flatten(
    collected: dict[str, Any],
    include_first_party: bool = False,
    high_privilege: Optional[set[str]] = None,
) -> list[PermissionGrant]:
    """Turn collected app data into one PermissionGrant per permission."""
    high_privilege = HIGH_PRIVILEGE_PERMISSIONS if high_privilege is None else high_privilege
    sps = {sp["id"]: sp for sp in collected.get("service_principals", []) if sp.get("id")}
    principal_names = collected.get("principal_names", {})
    rows: list[PermissionGrant] = []

    def audited(client: Optional[dict]) -> bool:
        return client is not None and (include_first_party or not client.get("isFirstParty"))

    for a in collected.get("app_role_assignments", []):
        client = sps.get(a.get("servicePrincipalId"))
        if not audited(client):
            continue
        resource = sps.get(a.get("resourceId"), {})
        permission = _app_role_value(resource, a.get("appRoleId") or "")
        rows.append(PermissionGrant(
            client_id=client["id"],
            client_name=client.get("displayName") or "",
            client_app_id=client.get("appId") or "",
            client_enabled=client.get("accountEnabled", True) is not False,
            resource_id=a.get("resourceId") or "",
            resource_name=resource.get("displayName") or a.get("resourceDisplayName") or "",
            permission=permission,
            permission_type="Application",
            consent_type="AdminConsent",
            granted=a.get("createdDateTime") or "",
            high_privilege=permission in high_privilege,
        ))

    for g in collected.get("oauth2_grants", []):
        client = sps.get(g.get("clientId"))
        if not audited(client):
            continue
        resource = sps.get(g.get("resourceId"), {})
        consent_type = g.get("consentType") or ""
        if consent_type == "AllPrincipals":
            principal = "All users"
        else:
            pid = g.get("principalId") or ""
            principal = principal_names.get(pid, pid)
        for scope in (g.get("scope") or "").split():
            rows.append(PermissionGrant(
                client_id=client["id"],
                client_name=client.get("displayName") or "",
                client_app_id=client.get("appId") or "",
                client_enabled=client.get("accountEnabled", True) is not False,
                resource_id=g.get("resourceId") or "",
                resource_name=resource.get("displayName") or "",
                permission=scope,
                permission_type="Delegated",
                consent_type=consent_type,
                principal=principal,
                high_privilege=scope in high_privilege,
            ))

    rows.sort(key=lambda r: (
        r.client_name.lower(), r.permission_type, r.resource_name.lower(), r.permission.lower(), r.principal
    ))
    return rows


def _app_role_value(resource: dict, app_role_id: str) -> str:
    if app_role_id == DEFAULT_APP_ROLE_ID:
        return "default"
    for role in resource.get("appRoles", []):
        if role.get("id") == app_role_id:
            return role.get("value") or role.get("displayName") or app_role_id
    return app_role_id


class AppPermissionAnalyzer(BaseAnalyzer):
    name = "app_permission_analyzer"
    domain = "app_permissions"
    prefix = "APP"
    description = "Application permissions: high privilege, admin consent, disabled apps"

    def __init__(self, include_first_party: bool = False, high_privilege: Optional[set[str]] = None):
        super().__init__()
        self.include_first_party = include_first_party
        self.high_privilege = HIGH_PRIVILEGE_PERMISSIONS if high_privilege is None else high_privilege
        self.grants: list[PermissionGrant] = []

    def _analyze(self, data: dict[str, Any]):
        apps_data = data.get("applications", {})
        if not apps_data.get("service_principals"):
            self.add_finding(
                control_name="No Application Data Collected",
                detection_logic="Service principal collection returned empty",
                severity="informational",
            )
            return

        self.grants = flatten(apps_data, self.include_first_party, self.high_privilege)
        logger.info(f"Flattened {len(self.grants)} permission grants")

        self._analyze_high_privilege_app_permissions()
        self._analyze_admin_consent()
        self._analyze_disabled_clients()

    def _analyze_high_privilege_app_permissions(self):
        risky = [g for g in self.grants if g.permission_type == "Application" and g.high_privilege]
        if not risky:
            return

        by_app: dict[str, list[str]] = {}
        for g in risky:
            by_app.setdefault(g.client_name or g.client_app_id, []).append(g.permission)
        takeover = any(g.permission in TENANT_TAKEOVER_PERMISSIONS for g in risky)

        self.add_finding(
            control_name="Apps with High-Privilege Application Permissions",
            detection_logic="App role assignments for permissions on the high-privilege list",
            evidence={
                "app_count": len(by_app),
                "apps": [
                    {"name": name, "permissions": sorted(perms)}
                    for name, perms in sorted(by_app.items())[:EVIDENCE_LIMIT]
                ],
            },
            severity="critical" if takeover else "high",
            risk_explanation=(
                "Application permissions work without a signed-in user. "
                "A leaked secret or certificate grants this access tenant-wide."
            ),
            remediation="Replace with narrower or delegated permissions; rotate and monitor credentials",
        )

    def _analyze_admin_consent(self):
        broad = [
            g for g in self.grants
            if g.permission_type == "Delegated"
            and g.consent_type == "AllPrincipals"
            and any(m in g.permission for m in BROAD_SCOPE_MARKERS)
        ]
        if not broad:
            return

        self.add_finding(
            control_name="Broad Admin-Consented Delegated Scopes",
            detection_logic="AllPrincipals OAuth2 grants with ReadWrite or FullControl scopes",
            evidence={
                "count": len(broad),
                "grants": [
                    {"app": g.client_name, "resource": g.resource_name, "scope": g.permission}
                    for g in broad[:EVIDENCE_LIMIT]
                ],
            },
            severity="medium",
            risk_explanation="Admin consent applies to every user in the tenant",
            remediation="Review whether tenant-wide consent is required for each scope",
        )

    def _analyze_disabled_clients(self):
        disabled = sorted({g.client_name or g.client_app_id for g in self.grants if not g.client_enabled})
        if not disabled:
            return

        self.add_finding(
            control_name="Disabled Applications Still Holding Grants",
            detection_logic="Service principals with accountEnabled=false that keep permission grants",
            evidence={"count": len(disabled), "apps": disabled[:EVIDENCE_LIMIT]},
            severity="low",
            risk_explanation="Re-enabling the app silently restores its access",
            remediation="Revoke the grants or delete the service principal",
        )
