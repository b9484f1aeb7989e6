"""
Membership backends — the directory operations the copy routines need,
implemented once for on-premises AD (ldap3) and once for Entra ID (Graph).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote

from ..directory.client import DirectoryClient
from ..directory.models import DirectoryUser, GroupRef
from ..graph.client import GraphClient, GraphAPIError, directory_object_ref

logger = logging.getLogger("directory_toolkit.operations.backends")

GROUP_ODATA_TYPE = "#microsoft.graph.group"
USER_SELECT = "id,displayName,userPrincipalName"
GROUP_SELECT = "id,displayName,groupTypes,mailEnabled,securityEnabled,onPremisesSyncEnabled"


class MembershipBackend(ABC):
    """Read and update group memberships and manager links in one directory."""

    name: str = "base"

    @abstractmethod
    async def resolve_user(self, identity: str) -> Optional[DirectoryUser]:
        raise NotImplementedError

    @abstractmethod
    async def groups_of(self, user: DirectoryUser) -> list[GroupRef]:
        raise NotImplementedError

    @abstractmethod
    async def add_member(self, group: GroupRef, user: DirectoryUser) -> bool:
        """Add user to group. Returns False when the user was already a member."""
        raise NotImplementedError

    @abstractmethod
    async def direct_reports(self, manager: DirectoryUser) -> list[DirectoryUser]:
        raise NotImplementedError

    @abstractmethod
    async def set_manager(self, user: DirectoryUser, manager: DirectoryUser) -> bool:
        raise NotImplementedError


class LdapBackend(MembershipBackend):
    """On-premises AD. User and group ids are distinguished names."""

    name = "ad"

    def __init__(self, directory: DirectoryClient):
        self.directory = directory

    async def resolve_user(self, identity: str) -> Optional[DirectoryUser]:
        account = await asyncio.to_thread(self.directory.find_user, identity)
        if account is None:
            return None
        return DirectoryUser(id=account.dn, name=account.label)

    async def groups_of(self, user: DirectoryUser) -> list[GroupRef]:
        # The primary group is not stored in member, so it never appears here
        return await asyncio.to_thread(self.directory.user_groups, user.id)

    async def add_member(self, group: GroupRef, user: DirectoryUser) -> bool:
        return await asyncio.to_thread(self.directory.add_group_member, group.id, user.id)

    async def direct_reports(self, manager: DirectoryUser) -> list[DirectoryUser]:
        reports = await asyncio.to_thread(self.directory.direct_reports, manager.id)
        return [DirectoryUser(id=a.dn, name=a.label) for a in reports]

    async def set_manager(self, user: DirectoryUser, manager: DirectoryUser) -> bool:
        return await asyncio.to_thread(self.directory.set_manager, user.id, manager.id)


def graph_group_ref(group: dict) -> GroupRef:
    """Classify a Graph group by whether its membership can be edited through Graph."""
    group_types = group.get("groupTypes") or []
    ref = GroupRef(id=group.get("id", ""), name=group.get("displayName") or "")
    if "DynamicMembership" in group_types:
        ref.manageable, ref.reason = False, "dynamic membership"
    elif group.get("onPremisesSyncEnabled"):
        ref.manageable, ref.reason = False, "synced from on-premises"
    elif group.get("mailEnabled") and "Unified" not in group_types:
        ref.manageable, ref.reason = False, "mail-enabled group (manage in Exchange)"
    return ref


class GraphBackend(MembershipBackend):
    """Entra ID through Microsoft Graph. Ids are object ids."""

    name = "graph"

    def __init__(self, graph: GraphClient):
        self.graph = graph

    async def resolve_user(self, identity: str) -> Optional[DirectoryUser]:
        data = await self.graph.get(
            f"users/{quote(identity, safe='@')}",
            params={"$select": USER_SELECT},
        )
        if data.get("_forbidden"):
            raise GraphAPIError(403, data.get("_error_message", "Forbidden"), f"users/{identity}")
        if data.get("_not_found") or not data.get("id"):
            return None
        return DirectoryUser(id=data["id"], name=data.get("userPrincipalName") or data.get("displayName") or "")

    async def groups_of(self, user: DirectoryUser) -> list[GroupRef]:
        items = await self.graph.get_all_pages(
            f"users/{user.id}/memberOf",
            params={"$select": GROUP_SELECT},
        )
        groups = [graph_group_ref(g) for g in items if g.get("@odata.type") == GROUP_ODATA_TYPE]
        groups.sort(key=lambda g: (g.name.lower(), g.id))
        return groups

    async def add_member(self, group: GroupRef, user: DirectoryUser) -> bool:
        try:
            await self.graph.post(f"groups/{group.id}/members/$ref", directory_object_ref(user.id))
        except GraphAPIError as e:
            if e.status_code == 400 and "already exist" in e.message.lower():
                return False
            raise
        return True

    async def direct_reports(self, manager: DirectoryUser) -> list[DirectoryUser]:
        items = await self.graph.get_all_pages(
            f"users/{manager.id}/directReports",
            params={"$select": USER_SELECT},
        )
        reports = [
            DirectoryUser(id=r["id"], name=r.get("userPrincipalName") or r.get("displayName") or "")
            for r in items
            if r.get("@odata.type", "#microsoft.graph.user") == "#microsoft.graph.user"
        ]
        reports.sort(key=lambda u: (u.name.lower(), u.id))
        return reports

    async def set_manager(self, user: DirectoryUser, manager: DirectoryUser) -> bool:
        await self.graph.put(f"users/{user.id}/manager/$ref", directory_object_ref(manager.id))
        return True
