"""
Exchange Online Mailbox Collector
Enumerates cloud users that carry a mail address, with the attributes
needed to link them back to on-premises accounts.
"""

from __future__ import annotations

import logging

from .base import GraphCollector, CollectorResult
from ..directory.models import CloudMailbox

logger = logging.getLogger("directory_toolkit.collectors.mailboxes")

MAILBOX_SELECT = (
    "id,displayName,userPrincipalName,mail,proxyAddresses,"
    "onPremisesImmutableId,onPremisesSyncEnabled,accountEnabled,assignedPlans"
)


def has_exchange_plan(assigned_plans: list[dict]) -> bool:
    return any(
        (p.get("service") or "").lower() == "exchange"
        and p.get("capabilityStatus") == "Enabled"
        for p in assigned_plans or []
    )


def to_mailbox(user: dict) -> CloudMailbox:
    return CloudMailbox(
        id=user.get("id", ""),
        user_principal_name=user.get("userPrincipalName") or "",
        mail=user.get("mail") or "",
        display_name=user.get("displayName") or "",
        proxy_addresses=list(user.get("proxyAddresses") or []),
        immutable_id=user.get("onPremisesImmutableId") or "",
        synced_from_on_premises=bool(user.get("onPremisesSyncEnabled")),
        account_enabled=user.get("accountEnabled", True) is not False,
        has_exchange_license=has_exchange_plan(user.get("assignedPlans", [])),
    )


class MailboxCollector(GraphCollector):
    name = "mailboxes"
    description = "Cloud users with an Exchange Online address"

    async def collect(self, result: CollectorResult):
        mailboxes = []
        async for user in self.safe_get_all_stream(
            "users",
            result,
            params={
                "$select": MAILBOX_SELECT,
                "$filter": "mail ne null",
                "$count": "true",       # advanced query: ne requires $count
                "$top": str(self.config.page_size),
            },
        ):
            mailboxes.append(to_mailbox(user).to_dict())

        unlicensed = sum(1 for m in mailboxes if not m["has_exchange_license"])
        if unlicensed:
            logger.info(f"{unlicensed} mail users have no Exchange plan (shared or resource mailboxes)")
        result.add_data("mailboxes", mailboxes)
