"""
Configuration module for the Directory Admin Toolkit.
Defines tunable parameters, API endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


class ConfigurationError(Exception):
    """Raised when no usable tenant or directory settings can be assembled."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/.default"
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Active Directory (LDAP) ─────────────────────────────────────────────────

@dataclass
class LdapConfig:
    """On-premises directory connection settings."""
    server: str = ""
    port: int = 0                  # 0 = 636 with SSL, 389 without
    use_ssl: bool = True
    bind_dn: str = ""
    password: str = ""             # Falls back to env, then prompt
    base_dn: str = ""
    page_size: int = 500
    connect_timeout: int = 10

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 636 if self.use_ssl else 389


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests to Graph
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000   # Safety cap on pagination loops

# Batch
BATCH_SIZE = 20                   # Graph $batch max is 20 requests

# Microsoft's own tenant; service principals owned by it are first-party apps
MICROSOFT_TENANT_ID = "f8cdef31-a31e-4b4a-93e4-5f571e91255a"

CERT_PASSWORD_ENV = "DIRTOOLS_CERT_PASSWORD"
LDAP_PASSWORD_ENV = "DIRTOOLS_LDAP_PASSWORD"


# ─── Collection Settings ────────────────────────────────────────────────────

# Application permissions considered high privilege when granted app-only
HIGH_PRIVILEGE_PERMISSIONS = {
    "Application.ReadWrite.All",
    "AppRoleAssignment.ReadWrite.All",
    "Directory.ReadWrite.All",
    "RoleManagement.ReadWrite.Directory",
    "Mail.ReadWrite",
    "Mail.Send",
    "Files.ReadWrite.All",
    "Sites.FullControl.All",
    "Sites.ReadWrite.All",
    "User.ReadWrite.All",
    "Group.ReadWrite.All",
    "GroupMember.ReadWrite.All",
    "Policy.ReadWrite.ConditionalAccess",
    "EntitlementManagement.ReadWrite.All",
    "PrivilegedAccess.ReadWrite.AzureADGroup",
    "full_access_as_app",
}


@dataclass
class CollectionConfig:
    """Controls for data collection behavior."""
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = MAX_PAGES_PER_ENDPOINT
    include_first_party_apps: bool = False   # Audit Microsoft-owned SPs too
    include_disabled_accounts: bool = True   # Reconcile disabled AD users
    high_privilege_permissions: set[str] = field(
        default_factory=lambda: set(HIGH_PRIVILEGE_PERMISSIONS)
    )


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: [
        "json", "csv", "markdown"
    ])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(
                os.getcwd(),
                f"dirtools_output_{self.timestamp}"
            )

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir)

    @property
    def reports_dir(self) -> Path:
        return self.run_dir / "reports"

    @property
    def cache_dir(self) -> Path:
        return self.run_dir / ".cache"

    def create_directories(self):
        for d in [self.reports_dir, self.cache_dir]:
            d.mkdir(parents=True, exist_ok=True)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolkitConfig:
    """Top-level configuration shared by every sub-command."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    ldap: LdapConfig = field(default_factory=LdapConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    cache_enabled: bool = True
    cache_ttl_hours: int = 24     # Cache validity period
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "ToolkitConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "ToolkitConfig":
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        if "ldap" in data:
            for k, v in data["ldap"].items():
                if hasattr(config.ldap, k):
                    setattr(config.ldap, k, v)
        if "collection" in data:
            for k, v in data["collection"].items():
                if k == "high_privilege_permissions":
                    v = set(v)
                if hasattr(config.collection, k):
                    setattr(config.collection, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.cache_enabled = data.get("cache_enabled", True)
        config.cache_ttl_hours = data.get("cache_ttl_hours", 24)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions ─────────────────────────────────────────

REQUIRED_PERMISSIONS = {
    # Mailbox reconciliation
    "User.Read.All": "Read user mail attributes, proxy addresses, licenses",

    # Application permission audit
    "Application.Read.All": "Read service principals and app role assignments",
    "DelegatedPermissionGrant.Read.All": "Read OAuth2 permission grants",
    "Directory.Read.All": "Resolve consenting principals and directory objects",

    # Copy routines (only with --apply)
    "GroupMember.ReadWrite.All": "Add users to groups when copying memberships",
    "User.ReadWrite.All": "Set manager when copying direct reports",
}
