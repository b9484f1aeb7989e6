"""
Directory object models shared by the AD and Graph code paths.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

# userAccountControl flag for a disabled account
UF_ACCOUNTDISABLE = 0x2


def normalize_address(value: Optional[str]) -> str:
    """Lower-case an address and strip an smtp:/SMTP: prefix."""
    if not value:
        return ""
    value = value.strip()
    if value.lower().startswith("smtp:"):
        value = value[5:]
    return value.lower()


def smtp_proxy_addresses(proxy_addresses: list[str]) -> list[str]:
    """Normalized SMTP entries of a proxyAddresses list (X500:, SIP: etc. dropped)."""
    return [
        normalize_address(p)
        for p in proxy_addresses or []
        if p and p.lower().startswith("smtp:")
    ]


def guid_to_immutable_id(raw_guid: Optional[bytes]) -> str:
    """objectGUID bytes as the base64 immutable id Entra ID stores for synced users."""
    if not raw_guid:
        return ""
    return base64.b64encode(raw_guid).decode("ascii")


@dataclass
class AdAccount:
    """An on-premises user account."""
    dn: str
    sam_account_name: str = ""
    user_principal_name: str = ""
    mail: str = ""
    proxy_addresses: list[str] = field(default_factory=list)
    enabled: bool = True
    display_name: str = ""
    immutable_id: str = ""
    when_created: str = ""

    @property
    def addresses(self) -> set[str]:
        found = {normalize_address(self.mail), normalize_address(self.user_principal_name)}
        found.update(smtp_proxy_addresses(self.proxy_addresses))
        found.discard("")
        return found

    @property
    def label(self) -> str:
        return self.user_principal_name or self.sam_account_name or self.dn

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CloudMailbox:
    """A cloud user carrying an Exchange Online address."""
    id: str
    user_principal_name: str = ""
    mail: str = ""
    display_name: str = ""
    proxy_addresses: list[str] = field(default_factory=list)
    immutable_id: str = ""
    synced_from_on_premises: bool = False
    account_enabled: bool = True
    has_exchange_license: bool = False

    @property
    def addresses(self) -> set[str]:
        found = {normalize_address(self.mail), normalize_address(self.user_principal_name)}
        found.update(smtp_proxy_addresses(self.proxy_addresses))
        found.discard("")
        return found

    @property
    def label(self) -> str:
        return self.mail or self.user_principal_name or self.id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DirectoryUser:
    """A resolved user in either backend: id is a DN for AD, an object id for Graph."""
    id: str
    name: str = ""

    def __str__(self) -> str:
        return self.name or self.id


@dataclass
class GroupRef:
    """A group a user belongs to, and whether the toolkit may add members to it."""
    id: str
    name: str = ""
    manageable: bool = True
    reason: str = ""
