"""
Application Permission Collector
Enumerates: service principals with their published roles, app role
assignments (application permissions) and OAuth2 grants (delegated permissions).
"""

from __future__ import annotations

import asyncio
import logging

from .base import GraphCollector, CollectorResult
from ..config import MICROSOFT_TENANT_ID

logger = logging.getLogger("directory_toolkit.collectors.apps")

SP_SELECT = (
    "id,appId,displayName,servicePrincipalType,accountEnabled,"
    "appOwnerOrganizationId,appRoles,oauth2PermissionScopes"
)


class AppPermissionCollector(GraphCollector):
    name = "applications"
    description = "Service principals, app role assignments, OAuth2 permission grants"

    @property
    def cache_key(self) -> str:
        # First-party principals change which assignments are collected
        return f"{super().cache_key}:{int(self.config.include_first_party_apps)}"

    async def collect(self, result: CollectorResult):
        sps = await self._collect_service_principals(result)
        await asyncio.gather(
            self._collect_app_role_assignments(sps, result),
            self._collect_oauth2_grants(result),
        )

    async def _collect_service_principals(self, result: CollectorResult) -> list[dict]:
        sps = []
        async for sp in self.safe_get_all_stream(
            "servicePrincipals",
            result,
            params={"$select": SP_SELECT, "$top": str(self.config.page_size)},
        ):
            sps.append({
                "id": sp.get("id"),
                "appId": sp.get("appId"),
                "displayName": sp.get("displayName"),
                "servicePrincipalType": sp.get("servicePrincipalType"),
                "accountEnabled": sp.get("accountEnabled", True),
                "isFirstParty": sp.get("appOwnerOrganizationId") == MICROSOFT_TENANT_ID,
                "appRoles": [
                    {"id": r.get("id"), "value": r.get("value"), "displayName": r.get("displayName")}
                    for r in sp.get("appRoles") or []
                ],
                "oauth2PermissionScopes": [
                    {"id": s.get("id"), "value": s.get("value")}
                    for s in sp.get("oauth2PermissionScopes") or []
                ],
            })

        result.add_data("service_principals", sps)
        return sps

    async def _collect_app_role_assignments(self, sps: list[dict], result: CollectorResult):
        """Application permissions granted to each audited service principal."""
        audited = [
            sp for sp in sps
            if sp.get("id") and (self.config.include_first_party_apps or not sp.get("isFirstParty"))
        ]
        per_sp = await asyncio.gather(*[
            self.safe_get_all(f"servicePrincipals/{sp['id']}/appRoleAssignments", result)
            for sp in audited
        ])

        assignments = []
        for sp, items in zip(audited, per_sp):
            for a in items:
                assignments.append({
                    "id": a.get("id"),
                    "servicePrincipalId": sp["id"],
                    "resourceId": a.get("resourceId"),
                    "resourceDisplayName": a.get("resourceDisplayName"),
                    "appRoleId": a.get("appRoleId"),
                    "createdDateTime": a.get("createdDateTime"),
                })

        result.add_data("app_role_assignments", assignments)

    async def _collect_oauth2_grants(self, result: CollectorResult):
        """OAuth2 permission grants (delegated consent) with consenting users resolved."""
        grants = await self.safe_get_all("oauth2PermissionGrants", result)
        result.add_data("oauth2_grants", [
            {
                "id": g.get("id"),
                "clientId": g.get("clientId"),
                "consentType": g.get("consentType"),  # AllPrincipals = admin consent
                "principalId": g.get("principalId"),
                "resourceId": g.get("resourceId"),
                "scope": g.get("scope") or "",
            }
            for g in grants
        ])

        principal_ids = sorted({g["principalId"] for g in grants if g.get("principalId")})
        result.add_data("principal_names", await self._resolve_principals(principal_ids, result))

    async def _resolve_principals(self, principal_ids: list[str], result: CollectorResult) -> dict:
        if not principal_ids:
            return {}
        responses = await self.graph.batch_get([
            f"users/{pid}?$select=id,userPrincipalName" for pid in principal_ids
        ])
        result.metadata["endpoints_queried"] += 1

        names = {}
        unresolved = 0
        for pid, body in zip(principal_ids, responses):
            if body.get("_error"):
                unresolved += 1
                continue
            names[pid] = body.get("userPrincipalName") or pid
        if unresolved:
            result.add_warning(f"{unresolved} consenting principals could not be resolved")
        return names
