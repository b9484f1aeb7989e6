"""
Mailbox Reconciliation Analyzer
Links on-premises AD accounts to Exchange Online mailboxes and reports
accounts with no mailbox, mailboxes with no account, and disabled
accounts that still own a mailbox.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .base import BaseAnalyzer
from ..directory.models import AdAccount, CloudMailbox

logger = logging.getLogger("directory_toolkit.analyzers.mailboxes")

EVIDENCE_LIMIT = 25


@dataclass
class MailboxLink:
    account: AdAccount
    mailbox: CloudMailbox
    match: str                 # "immutable_id" or "address"
    matched_on: str = ""

    def to_dict(self) -> dict:
        return {
            "ad_dn": self.account.dn,
            "ad_upn": self.account.user_principal_name,
            "ad_enabled": self.account.enabled,
            "mailbox_id": self.mailbox.id,
            "mailbox_address": self.mailbox.label,
            "match": self.match,
            "matched_on": self.matched_on,
        }


@dataclass
class ReconciliationResult:
    """Every account and mailbox lands in exactly one bucket."""
    matched: list[MailboxLink] = field(default_factory=list)
    disabled_with_mailbox: list[MailboxLink] = field(default_factory=list)
    ad_only: list[AdAccount] = field(default_factory=list)
    ad_no_address: list[AdAccount] = field(default_factory=list)
    disabled_without_mailbox: list[AdAccount] = field(default_factory=list)
    cloud_only: list[CloudMailbox] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {
            "matched": len(self.matched),
            "disabled_with_mailbox": len(self.disabled_with_mailbox),
            "ad_only": len(self.ad_only),
            "ad_no_address": len(self.ad_no_address),
            "disabled_without_mailbox": len(self.disabled_without_mailbox),
            "cloud_only": len(self.cloud_only),
        }

    def tables(self) -> dict[str, list[dict]]:
        """Row-per-object tables for CSV export."""
        return {
            "matched": [l.to_dict() for l in self.matched],
            "disabled_with_mailbox": [l.to_dict() for l in self.disabled_with_mailbox],
            "ad_only": [_account_row(a) for a in self.ad_only],
            "ad_no_address": [_account_row(a) for a in self.ad_no_address],
            "disabled_without_mailbox": [_account_row(a) for a in self.disabled_without_mailbox],
            "cloud_only": [_mailbox_row(m) for m in self.cloud_only],
        }


def _account_row(a: AdAccount) -> dict:
    return {
        "dn": a.dn,
        "sam_account_name": a.sam_account_name,
        "user_principal_name": a.user_principal_name,
        "mail": a.mail,
        "enabled": a.enabled,
        "display_name": a.display_name,
    }


def _mailbox_row(m: CloudMailbox) -> dict:
    return {
        "id": m.id,
        "mail": m.mail,
        "user_principal_name": m.user_principal_name,
        "display_name": m.display_name,
        "synced_from_on_premises": m.synced_from_on_premises,
        "has_exchange_license": m.has_exchange_license,
    }


def reconcile(accounts: list[AdAccount], mailboxes: list[CloudMailbox]) -> ReconciliationResult:
    """
    Link accounts to mailboxes.

    Immutable id links are made first; remaining accounts link on any shared
    address. A mailbox links to at most one account: accounts are processed
    in DN order and candidate mailboxes in input order.
    """
    accounts = sorted(accounts, key=lambda a: a.dn.lower())

    by_immutable_id: dict[str, int] = {}
    by_address: dict[str, list[int]] = {}
    for idx, mbx in enumerate(mailboxes):
        if mbx.immutable_id:
            by_immutable_id.setdefault(mbx.immutable_id, idx)
        for address in mbx.addresses:
            by_address.setdefault(address, []).append(idx)

    taken: set[int] = set()
    links: dict[int, MailboxLink] = {}      # account index -> link

    for a_idx, account in enumerate(accounts):
        m_idx = by_immutable_id.get(account.immutable_id) if account.immutable_id else None
        if m_idx is not None and m_idx not in taken:
            taken.add(m_idx)
            links[a_idx] = MailboxLink(account, mailboxes[m_idx], "immutable_id", account.immutable_id)

    for a_idx, account in enumerate(accounts):
        if a_idx in links:
            continue
        found = _first_free_by_address(account, by_address, taken)
        if found is not None:
            m_idx, address = found
            taken.add(m_idx)
            links[a_idx] = MailboxLink(account, mailboxes[m_idx], "address", address)

    result = ReconciliationResult()
    for a_idx, account in enumerate(accounts):
        link = links.get(a_idx)
        if link is not None:
            if account.enabled:
                result.matched.append(link)
            else:
                result.disabled_with_mailbox.append(link)
        elif not account.enabled:
            result.disabled_without_mailbox.append(account)
        elif account.addresses:
            result.ad_only.append(account)
        else:
            result.ad_no_address.append(account)

    result.cloud_only = [m for idx, m in enumerate(mailboxes) if idx not in taken]
    return result


def _first_free_by_address(
    account: AdAccount,
    by_address: dict[str, list[int]],
    taken: set[int],
) -> Optional[tuple[int, str]]:
    best: Optional[tuple[int, str]] = None
    for address in sorted(account.addresses):
        for m_idx in by_address.get(address, []):
            if m_idx in taken:
                continue
            if best is None or m_idx < best[0]:
                best = (m_idx, address)
            break
    return best


class MailboxReconciler(BaseAnalyzer):
    name = "mailbox_reconciler"
    domain = "mailbox_reconciliation"
    prefix = "MBX"
    description = "AD account to Exchange Online mailbox reconciliation"

    def __init__(self):
        super().__init__()
        self.result = ReconciliationResult()

    def _analyze(self, data: dict[str, Any]):
        accounts = [AdAccount(**a) for a in data.get("ad_accounts", {}).get("accounts", [])]
        mailboxes = [CloudMailbox(**m) for m in data.get("mailboxes", {}).get("mailboxes", [])]

        if not accounts and not mailboxes:
            self.add_finding(
                control_name="No Directory Data Collected",
                detection_logic="Both the AD and mailbox collections returned empty",
                severity="informational",
            )
            return

        self.result = reconcile(accounts, mailboxes)
        logger.info(f"Reconciliation summary: {self.result.summary()}")

        r = self.result
        if r.ad_only:
            self.add_finding(
                control_name="Enabled AD Accounts Without a Mailbox",
                detection_logic="Enabled accounts whose addresses match no Exchange Online mailbox",
                evidence={
                    "count": len(r.ad_only),
                    "accounts": [a.label for a in r.ad_only[:EVIDENCE_LIMIT]],
                },
                severity="medium",
                risk_explanation="Users may be missing mail service, or sync scoping excludes them",
                remediation="Check the directory sync scope and license assignment for these accounts",
            )

        if r.cloud_only:
            self.add_finding(
                control_name="Mailboxes Without an AD Account",
                detection_logic="Mailboxes linked to no on-premises account by immutable id or address",
                evidence={
                    "count": len(r.cloud_only),
                    "synced_orphans": sum(1 for m in r.cloud_only if m.synced_from_on_premises),
                    "mailboxes": [m.label for m in r.cloud_only[:EVIDENCE_LIMIT]],
                },
                severity="high" if any(m.synced_from_on_premises for m in r.cloud_only) else "low",
                risk_explanation=(
                    "Synced mailboxes with no source account are orphaned and escape "
                    "on-premises lifecycle controls; cloud-only mailboxes may be expected"
                ),
                remediation="Confirm ownership; remove or convert orphaned mailboxes",
            )

        if r.disabled_with_mailbox:
            self.add_finding(
                control_name="Disabled AD Accounts Still Holding a Mailbox",
                detection_logic="Disabled accounts linked to an existing Exchange Online mailbox",
                evidence={
                    "count": len(r.disabled_with_mailbox),
                    "licensed": sum(1 for l in r.disabled_with_mailbox if l.mailbox.has_exchange_license),
                    "accounts": [l.account.label for l in r.disabled_with_mailbox[:EVIDENCE_LIMIT]],
                },
                severity="medium",
                risk_explanation="Leavers' mailboxes keep consuming licenses and may still receive mail",
                remediation="Convert to shared mailboxes or remove licenses per the offboarding process",
            )
