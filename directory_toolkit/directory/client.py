"""
On-premises Active Directory client built on ldap3.
Paged searches for users, groups and direct reports, plus the two guarded
modifications the copy routines need.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import ldap3
from ldap3.core.exceptions import LDAPException, LDAPBindError, LDAPSocketOpenError
from ldap3.utils.conv import escape_filter_chars

from ..config import LdapConfig
from ..safety.guardian import ChangeGuardian
from .models import AdAccount, GroupRef, UF_ACCOUNTDISABLE, guid_to_immutable_id

logger = logging.getLogger("directory_toolkit.directory")

USER_FILTER = "(&(objectClass=user)(!(objectClass=computer)))"
GROUP_FILTER = "(objectClass=group)"

USER_ATTRIBUTES = [
    "sAMAccountName",
    "userPrincipalName",
    "mail",
    "proxyAddresses",
    "userAccountControl",
    "displayName",
    "objectGUID",
    "whenCreated",
]

GROUP_ATTRIBUTES = ["cn", "groupType"]

# LDAP result codes that mean the change is already in place
RESULT_ALREADY_PRESENT = {20, 68}   # attributeOrValueExists, entryAlreadyExists


class DirectoryError(Exception):
    """Raised when the directory cannot be reached or rejects an operation."""
    pass


def _single(attributes: dict, name: str, default: Any = "") -> Any:
    """First value of an attribute; ldap3 returns lists when no schema is loaded."""
    value = attributes.get(name, default)
    if isinstance(value, (list, tuple)):
        return value[0] if value else default
    return value if value is not None else default


def _multi(attributes: dict, name: str) -> list:
    value = attributes.get(name)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def is_dn(identity: str) -> bool:
    return "=" in identity and "," in identity


class DirectoryClient:
    """
    Thin ldap3 wrapper.
    Pass an existing connection (e.g. an ldap3 MOCK_SYNC connection) to skip
    server setup; otherwise connect() binds with the configured credentials.
    """

    def __init__(
        self,
        config: LdapConfig,
        guardian: ChangeGuardian,
        connection: Optional[ldap3.Connection] = None,
    ):
        self.config = config
        self.guardian = guardian
        self.connection = connection

    def __enter__(self):
        if self.connection is None:
            self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()

    def connect(self) -> ldap3.Connection:
        """Bind to the configured server and return the connection."""
        if not self.config.server:
            raise DirectoryError("No LDAP server configured.")

        server = ldap3.Server(
            self.config.server,
            port=self.config.effective_port,
            use_ssl=self.config.use_ssl,
            get_info=ldap3.ALL,
            connect_timeout=self.config.connect_timeout,
        )
        logger.info(f"Binding to {self.config.server}:{self.config.effective_port} as {self.config.bind_dn}")
        try:
            self.connection = ldap3.Connection(
                server,
                user=self.config.bind_dn,
                password=self.config.password,
                auto_bind=True,
            )
        except LDAPBindError as e:
            raise DirectoryError(f"Authentication to {self.config.server} failed: {e}")
        except LDAPSocketOpenError as e:
            raise DirectoryError(f"Cannot connect to {self.config.server}: {e}")
        return self.connection

    def disconnect(self):
        if self.connection is not None:
            self.connection.unbind()
            self.connection = None

    def _conn(self) -> ldap3.Connection:
        if self.connection is None:
            return self.connect()
        return self.connection

    # ─── Search ──────────────────────────────────────────────────────────────

    def paged_search(
        self,
        search_filter: str,
        attributes: list[str],
        base_dn: Optional[str] = None,
        scope: str = ldap3.SUBTREE,
    ) -> Iterator[dict]:
        """Yield {'dn', 'attributes', 'raw_attributes'} for every matching entry."""
        conn = self._conn()
        try:
            entries = conn.extend.standard.paged_search(
                search_base=base_dn or self.config.base_dn,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes,
                paged_size=self.config.page_size,
                generator=True,
            )
            for entry in entries:
                if entry.get("type") != "searchResEntry":
                    continue
                yield {
                    "dn": entry["dn"],
                    "attributes": entry.get("attributes", {}),
                    "raw_attributes": entry.get("raw_attributes", {}),
                }
        except LDAPException as e:
            raise DirectoryError(f"Search {search_filter} failed: {e}")

    def list_accounts(self, include_disabled: bool = True) -> list[AdAccount]:
        """All user accounts under the base DN, ordered by DN."""
        accounts = []
        for entry in self.paged_search(USER_FILTER, USER_ATTRIBUTES):
            account = self._to_account(entry)
            if account.enabled or include_disabled:
                accounts.append(account)
        accounts.sort(key=lambda a: a.dn.lower())
        logger.info(f"Read {len(accounts)} AD accounts from {self.config.base_dn}")
        return accounts

    def find_user(self, identity: str) -> Optional[AdAccount]:
        """Look up a user by DN, sAMAccountName, userPrincipalName or mail."""
        if is_dn(identity):
            found = list(self.paged_search(USER_FILTER, USER_ATTRIBUTES, base_dn=identity, scope=ldap3.BASE))
        else:
            value = escape_filter_chars(identity)
            found = list(self.paged_search(
                f"(&{USER_FILTER}(|(sAMAccountName={value})"
                f"(userPrincipalName={value})(mail={value})))",
                USER_ATTRIBUTES,
            ))
        if not found:
            return None
        if len(found) > 1:
            raise DirectoryError(f"Identity '{identity}' matches {len(found)} accounts")
        return self._to_account(found[0])

    def user_groups(self, user_dn: str) -> list[GroupRef]:
        """Groups listing the user in their member attribute (direct membership)."""
        flt = f"(&{GROUP_FILTER}(member={escape_filter_chars(user_dn)}))"
        groups = [
            GroupRef(id=e["dn"], name=str(_single(e["attributes"], "cn", e["dn"])))
            for e in self.paged_search(flt, GROUP_ATTRIBUTES)
        ]
        groups.sort(key=lambda g: g.id.lower())
        return groups

    def direct_reports(self, manager_dn: str) -> list[AdAccount]:
        flt = f"(&{USER_FILTER}(manager={escape_filter_chars(manager_dn)}))"
        reports = [self._to_account(e) for e in self.paged_search(flt, USER_ATTRIBUTES)]
        reports.sort(key=lambda a: a.dn.lower())
        return reports

    # ─── Modify ──────────────────────────────────────────────────────────────

    def add_group_member(self, group_dn: str, user_dn: str) -> bool:
        """
        Add a member to a group.
        Returns True when applied, False when the membership already existed.
        """
        self.guardian.validate_ldap_modify(group_dn, "member")
        return self._modify(group_dn, {"member": [(ldap3.MODIFY_ADD, [user_dn])]})

    def set_manager(self, user_dn: str, manager_dn: str) -> bool:
        self.guardian.validate_ldap_modify(user_dn, "manager")
        return self._modify(user_dn, {"manager": [(ldap3.MODIFY_REPLACE, [manager_dn])]})

    def _modify(self, dn: str, changes: dict) -> bool:
        conn = self._conn()
        try:
            ok = conn.modify(dn, changes)
        except LDAPException as e:
            raise DirectoryError(f"Modify of {dn} failed: {e}")
        if ok:
            logger.info(f"Modified {dn}: {', '.join(changes)}")
            return True
        code = conn.result.get("result")
        if code in RESULT_ALREADY_PRESENT:
            logger.debug(f"No change needed on {dn}: {conn.result.get('description')}")
            return False
        raise DirectoryError(
            f"Modify of {dn} rejected: {conn.result.get('description')} "
            f"{conn.result.get('message', '')}".strip()
        )

    @staticmethod
    def _to_account(entry: dict) -> AdAccount:
        attrs = entry["attributes"]
        raw = entry.get("raw_attributes") or {}
        try:
            uac = int(_single(attrs, "userAccountControl", 0) or 0)
        except (TypeError, ValueError):
            uac = 0
        raw_guid = _single(raw, "objectGUID", b"")
        return AdAccount(
            dn=entry["dn"],
            sam_account_name=str(_single(attrs, "sAMAccountName")),
            user_principal_name=str(_single(attrs, "userPrincipalName")),
            mail=str(_single(attrs, "mail")),
            proxy_addresses=[str(p) for p in _multi(attrs, "proxyAddresses")],
            enabled=not (uac & UF_ACCOUNTDISABLE),
            display_name=str(_single(attrs, "displayName")),
            immutable_id=guid_to_immutable_id(raw_guid if isinstance(raw_guid, bytes) else b""),
            when_created=str(_single(attrs, "whenCreated")),
        )
