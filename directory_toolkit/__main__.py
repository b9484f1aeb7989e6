"""
Directory Admin Toolkit — Command-line entry point

Usage:
    python -m directory_toolkit reconcile-mailboxes --profile contoso-prod
    python -m directory_toolkit audit-app-permissions --profile contoso-prod
    python -m directory_toolkit copy-groups alice@contoso.com bob@contoso.com --backend graph
    python -m directory_toolkit copy-reports "CN=Old Boss,OU=Staff,DC=contoso,DC=com" newboss --apply
    python -m directory_toolkit acl-snapshot /srv/share --max-depth 3
    python -m directory_toolkit acl-diff before.snapshot.json after.snapshot.json

Profile management:
    python -m directory_toolkit profile add <name> --tenant-id ... --client-id ...
    python -m directory_toolkit profile list
    python -m directory_toolkit profile remove <name>
    python -m directory_toolkit profile set-default <name>

Copy commands only plan changes unless --apply is given.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

from . import __version__
from .config import (
    ToolkitConfig,
    CertificateAuth,
    DelegatedAuth,
    ConfigurationError,
    LDAP_PASSWORD_ENV,
)
from .safety.guardian import ChangeGuardian
from .auth.authenticator import Authenticator, AuthenticationError, resolve_secret
from .graph.client import GraphClient, GraphAPIError
from .cache.store import RunCache
from .collectors import AdAccountCollector, AppPermissionCollector, MailboxCollector, CollectorResult
from .analyzers import MailboxReconciler, AppPermissionAnalyzer
from .directory.client import DirectoryClient, DirectoryError
from .operations import (
    LdapBackend,
    GraphBackend,
    OperationError,
    copy_group_memberships,
    copy_direct_reports,
)
from .acl import snapshot, diff_snapshots, Snapshot, SnapshotError
from .reporting import Report, EXPORTERS
from .profiles import ProfileStore, TenantProfile, resolve_profile

logger = logging.getLogger("directory_toolkit")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CHANGES_FAILED = 2

ALL_FORMATS = ["json", "csv", "markdown"]


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action
    store = ProfileStore.load()

    if action == "list":
        return _profile_list(store)
    elif action == "add":
        return _profile_add(store, args)
    elif action == "remove":
        if store.remove(args.profile_name):
            print(f"  ✅ Profile '{args.profile_name}' removed.")
            return EXIT_OK
        print(f"  ❌ Profile '{args.profile_name}' not found.")
        return EXIT_ERROR
    elif action == "set-default":
        if store.set_default(args.profile_name):
            print(f"  ✅ Default profile set to '{args.profile_name}'.")
            return EXIT_OK
        print(f"  ❌ Profile '{args.profile_name}' not found.")
        return EXIT_ERROR

    print("Usage: python -m directory_toolkit profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list(store: ProfileStore) -> int:
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m directory_toolkit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --ldap-server dc01.contoso.com")
        return EXIT_OK

    print(f"\n  {'Name':<24s} {'Tenant ID':<38s} {'LDAP Server':<28s} {'Default'}")
    print(f"  {'─'*24} {'─'*38} {'─'*28} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        name_col = p.name + (f" ({p.tenant_display_name})" if p.tenant_display_name else "")
        print(f"  {name_col:<24s} {p.tenant_id or '-':<38s} {p.ldap_server or '-':<28s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(store: ProfileStore, args: argparse.Namespace) -> int:
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id or "",
        client_id=args.client_id or "",
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        ldap_server=args.ldap_server or "",
        ldap_base_dn=args.base_dn or "",
        ldap_bind_dn=args.bind_dn or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return EXIT_OK


def _cmd_permissions() -> int:
    print(f"\n  {'Permission':<36s} Used for")
    print(f"  {'─'*36} {'─'*48}")
    for permission, purpose in Authenticator.list_required_permissions().items():
        print(f"  {permission:<36s} {purpose}")
    print("\n  Write permissions are only exercised by copy commands run with --apply.\n")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _output_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory for reports (default: ./dirtools_output_<timestamp>)",
    )
    parent.add_argument(
        "--formats",
        nargs="+",
        choices=ALL_FORMATS,
        default=ALL_FORMATS,
        help="Output formats to generate",
    )
    parent.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to JSON configuration file",
    )
    parent.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Log progress (-v) or debug detail (-vv)",
    )
    return parent


def _tenant_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--profile", "-p", default=None,
                        help="Profile name to use (run 'profile list' to see available)")
    parent.add_argument("--delegated", action="store_true",
                        help="Use delegated (device-code) authentication instead of certificate")
    parent.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    parent.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    parent.add_argument("--cert-path", type=Path, help="Base64-encoded PFX (overrides profile)")
    parent.add_argument("--tenant-name", default=None,
                        help="Display name for the tenant in reports (overrides profile)")
    parent.add_argument("--no-cache", action="store_true",
                        help="Disable caching (fresh collection every time)")
    return parent


def _ldap_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--ldap-server", default=None, help="Domain controller (overrides profile)")
    parent.add_argument("--base-dn", default=None, help="Search base DN (overrides profile)")
    parent.add_argument("--bind-dn", default=None, help="Bind DN or UPN (overrides profile)")
    parent.add_argument("--no-ssl", action="store_true", help="Use plain LDAP on port 389")
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="directory_toolkit",
        description="Directory Admin Toolkit for Active Directory and Microsoft 365",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    output, tenant, ldap = _output_parent(), _tenant_parent(), _ldap_parent()

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--ldap-server", help="Domain controller host name")
    add_p.add_argument("--base-dn", help="Directory search base DN")
    add_p.add_argument("--bind-dn", help="Directory bind account")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")
    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name")
    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name")

    subparsers.add_parser("permissions", help="List the Graph API permissions the app registration needs")

    # --- reconcile-mailboxes ---
    rec = subparsers.add_parser(
        "reconcile-mailboxes",
        parents=[output, tenant, ldap],
        help="Reconcile AD accounts against Exchange Online mailboxes",
    )
    rec.add_argument("--exclude-disabled", action="store_true",
                     help="Leave disabled AD accounts out of the reconciliation")

    # --- audit-app-permissions ---
    audit = subparsers.add_parser(
        "audit-app-permissions",
        parents=[output, tenant],
        help="Audit application and delegated permissions of service principals",
    )
    audit.add_argument("--include-microsoft-apps", action="store_true",
                       help="Also audit Microsoft first-party service principals")

    # --- copy-groups / copy-reports ---
    for command, help_text, source_help, target_help in (
        ("copy-groups", "Copy group memberships from one user to another",
         "User whose groups are copied", "User who is added to the groups"),
        ("copy-reports", "Move direct reports from one manager to another",
         "Current manager", "New manager"),
    ):
        cp = subparsers.add_parser(command, parents=[output, tenant, ldap], help=help_text)
        cp.add_argument("source", help=source_help)
        cp.add_argument("target", help=target_help)
        cp.add_argument("--backend", choices=["ad", "graph"], default="ad",
                        help="Directory to change: on-premises AD or Entra ID (default: ad)")
        cp.add_argument("--apply", action="store_true",
                        help="Perform the changes (default is a dry run)")

    # --- acl-snapshot / acl-diff ---
    snap = subparsers.add_parser("acl-snapshot", parents=[output],
                                 help="Snapshot filesystem ownership and ACLs breadth-first")
    snap.add_argument("path", type=Path, help="Root directory to walk")
    snap.add_argument("--max-depth", type=int, default=None,
                      help="Levels below the root to descend (default: unlimited)")
    snap.add_argument("--dirs-only", action="store_true", help="Record directories only")

    diff = subparsers.add_parser("acl-diff", parents=[output],
                                 help="Compare two saved ACL snapshots")
    diff.add_argument("old", type=Path, help="Earlier snapshot (.snapshot.json)")
    diff.add_argument("new", type=Path, help="Later snapshot (.snapshot.json)")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> tuple[ToolkitConfig, Optional[TenantProfile]]:
    """
    Build configuration from config file, then profile, then CLI flags.
    Tenant and directory settings are only required by the commands that use them.
    """
    if getattr(args, "config", None):
        if not args.config.exists():
            raise ConfigurationError(f"Config file not found: {args.config}")
        config = ToolkitConfig.from_file(args.config)
    else:
        config = ToolkitConfig()

    config.verbose = config.verbose or bool(getattr(args, "verbose", 0))
    if getattr(args, "output_dir", None):
        config.output.base_dir = str(args.output_dir)
    config.output.formats = list(getattr(args, "formats", None) or config.output.formats)
    if getattr(args, "no_cache", False):
        config.cache_enabled = False

    profile = None
    if hasattr(args, "profile"):
        if args.profile:
            profile = resolve_profile(args.profile)
            if not profile:
                raise ConfigurationError(
                    f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
                )
        elif not args.config and not args.tenant_id:
            profile = resolve_profile()
        _apply_tenant(config, args, profile)

    if hasattr(args, "ldap_server"):
        _apply_ldap(config, args, profile)

    return config, profile


def _apply_tenant(config: ToolkitConfig, args: argparse.Namespace, profile: Optional[TenantProfile]):
    tenant_id = args.tenant_id or (profile.tenant_id if profile else "")
    client_id = args.client_id or (profile.client_id if profile else "")

    if args.delegated:
        config.auth.mode = "delegated"

    if tenant_id and client_id:
        if config.auth.mode == "delegated":
            config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            if args.cert_path:
                cert_path = str(args.cert_path)
            elif profile:
                cert_path = profile.resolve_cert_path()
            elif config.auth.certificate:
                cert_path = config.auth.certificate.certificate_path
            else:
                cert_path = "./base64.txt"
            config.auth.certificate = CertificateAuth(
                tenant_id=tenant_id,
                client_id=client_id,
                certificate_path=cert_path,
            )
    elif args.cert_path and config.auth.certificate:
        config.auth.certificate.certificate_path = str(args.cert_path)


def _apply_ldap(config: ToolkitConfig, args: argparse.Namespace, profile: Optional[TenantProfile]):
    ldap = config.ldap
    if profile:
        ldap.server = profile.ldap_server or ldap.server
        ldap.base_dn = profile.ldap_base_dn or ldap.base_dn
        ldap.bind_dn = profile.ldap_bind_dn or ldap.bind_dn
    ldap.server = args.ldap_server or ldap.server
    ldap.base_dn = args.base_dn or ldap.base_dn
    ldap.bind_dn = args.bind_dn or ldap.bind_dn
    if args.no_ssl:
        ldap.use_ssl = False


def _tenant_key(config: ToolkitConfig) -> str:
    auth = config.auth.certificate or config.auth.delegated
    return auth.tenant_id if auth else ""


def _require_tenant(config: ToolkitConfig):
    if config.auth.mode == "delegated" and config.auth.delegated:
        return
    if config.auth.mode == "certificate" and config.auth.certificate:
        return
    raise ConfigurationError(
        "No tenant credentials found. Use --profile <name>, "
        "--tenant-id X --client-id Y, or --config config.json"
    )


def _require_ldap(config: ToolkitConfig):
    if not config.ldap.server or not config.ldap.base_dn:
        raise ConfigurationError(
            "No directory settings found. Use --profile <name> or --ldap-server and --base-dn"
        )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@asynccontextmanager
async def open_graph(config: ToolkitConfig, guardian: ChangeGuardian) -> AsyncIterator[GraphClient]:
    _require_tenant(config)
    print("\n🔐 Authenticating to Microsoft Graph...")
    token = await Authenticator(config.auth).acquire_token()
    print("✅ Authentication successful.")
    async with GraphClient(token, guardian, max_pages=config.collection.max_pages) as client:
        yield client
        logger.info(f"Graph statistics: {client.get_stats()}")


def open_directory(config: ToolkitConfig, guardian: ChangeGuardian) -> DirectoryClient:
    _require_ldap(config)
    if config.ldap.bind_dn:
        config.ldap.password = resolve_secret(
            config.ldap.password,
            LDAP_PASSWORD_ENV,
            f"Password for {config.ldap.bind_dn}: ",
        )
    print(f"\n🔐 Binding to {config.ldap.server}...")
    directory = DirectoryClient(config.ldap, guardian)
    directory.connect()
    print("✅ Directory bind successful.")
    return directory


def _open_cache(config: ToolkitConfig, run_id: str, command: str) -> Optional[RunCache]:
    if not config.cache_enabled:
        return None
    cache = RunCache(config.output.cache_dir, ttl_hours=config.cache_ttl_hours)
    cache.clear_expired()
    cache.start_run(run_id, command)
    return cache


def _report_collection(result: CollectorResult):
    name = result.collector_name
    if result.failed:
        print(f"  ❌ {name}: FAILED — {'; '.join(result.metadata['errors'])}")
        return
    source = " (cached)" if result.metadata.get("from_cache") else ""
    print(f"  ✅ {name}: {result.metadata['items_collected']} items "
          f"({result.metadata.get('duration_seconds', 0)}s){source}")
    for w in result.metadata.get("warnings", []):
        print(f"      ⚠  {w}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def run_reconcile(args, config: ToolkitConfig, run_id: str, tenant_name: str) -> tuple[Report, int]:
    if args.exclude_disabled:
        config.collection.include_disabled_accounts = False

    guardian = ChangeGuardian(apply=False)
    cache = _open_cache(config, run_id, args.command)
    directory = open_directory(config, guardian)
    try:
        async with open_graph(config, guardian) as graph:
            print("\n  Collecting AD accounts and cloud mailboxes...\n")
            ad_result, mbx_result = await asyncio.gather(
                AdAccountCollector(
                    directory, config.collection, cache=cache, run_id=run_id,
                    cache_scope=f"{config.ldap.server}/{config.ldap.base_dn}",
                ).execute(),
                MailboxCollector(
                    graph, config.collection, cache=cache, run_id=run_id,
                    cache_scope=_tenant_key(config),
                ).execute(),
            )
    finally:
        directory.disconnect()

    for result in (ad_result, mbx_result):
        _report_collection(result)
    if ad_result.failed or mbx_result.failed:
        # A partial inventory would report false orphans
        raise OperationError("Collection incomplete; reconciliation skipped")

    reconciler = MailboxReconciler()
    findings = reconciler.analyze({
        "ad_accounts": ad_result.data,
        "mailboxes": mbx_result.data,
    })
    summary = {
        "ad_accounts": len(ad_result.data.get("accounts", [])),
        "mailboxes": len(mbx_result.data.get("mailboxes", [])),
        **reconciler.result.summary(),
    }
    if cache:
        cache.complete_run(run_id)

    report = Report(
        command=args.command,
        run_id=run_id,
        title="AD to Exchange Online Mailbox Reconciliation",
        tenant_name=tenant_name,
        summary=summary,
        tables=reconciler.result.tables(),
        findings=findings,
    )
    return report, EXIT_OK


async def run_app_audit(args, config: ToolkitConfig, run_id: str, tenant_name: str) -> tuple[Report, int]:
    if args.include_microsoft_apps:
        config.collection.include_first_party_apps = True

    guardian = ChangeGuardian(apply=False)
    cache = _open_cache(config, run_id, args.command)
    async with open_graph(config, guardian) as graph:
        print("\n  Collecting service principals and grants...\n")
        result = await AppPermissionCollector(
            graph, config.collection, cache=cache, run_id=run_id,
            cache_scope=_tenant_key(config),
        ).execute()

    _report_collection(result)
    if result.failed and not result.data.get("service_principals"):
        raise OperationError("Service principal collection failed")

    analyzer = AppPermissionAnalyzer(
        include_first_party=config.collection.include_first_party_apps,
        high_privilege=config.collection.high_privilege_permissions,
    )
    findings = analyzer.analyze({"applications": result.data})
    grants = analyzer.grants
    summary = {
        "service_principals": len(result.data.get("service_principals", [])),
        "apps_with_grants": len({g.client_id for g in grants}),
        "application_permissions": sum(1 for g in grants if g.permission_type == "Application"),
        "delegated_permissions": sum(1 for g in grants if g.permission_type == "Delegated"),
        "high_privilege_permissions": sum(1 for g in grants if g.high_privilege),
        "permission_gaps": len(result.metadata.get("permission_gaps", [])),
    }
    if cache:
        cache.complete_run(run_id, "partial" if result.failed else "completed")

    report = Report(
        command=args.command,
        run_id=run_id,
        title="Azure Application Permission Audit",
        tenant_name=tenant_name,
        summary=summary,
        tables={"permission_grants": [g.to_dict() for g in grants]},
        findings=findings,
    )
    return report, EXIT_OK


async def run_copy(args, config: ToolkitConfig, run_id: str, tenant_name: str) -> tuple[Report, int]:
    guardian = ChangeGuardian(apply=args.apply)
    guardian.print_banner()
    operation = copy_group_memberships if args.command == "copy-groups" else copy_direct_reports

    if args.backend == "ad":
        with open_directory(config, guardian) as directory:
            result = await operation(LdapBackend(directory), args.source, args.target, guardian)
    else:
        async with open_graph(config, guardian) as graph:
            result = await operation(GraphBackend(graph), args.source, args.target, guardian)

    print(f"\n  {result.source} → {result.target} ({result.backend})\n")
    icons = {"planned": "📝", "applied": "✅", "skipped": "⏭ ", "failed": "❌"}
    for record in result.records:
        detail = f" — {record.detail}" if record.detail else ""
        print(f"  {icons.get(record.status, '•')} {record.status:<8s} {record.action} "
              f"{record.subject} → {record.target}{detail}")
    if not result.records:
        print("  Nothing to copy.")

    report = Report(
        command=args.command,
        run_id=run_id,
        title="Copy Group Memberships" if args.command == "copy-groups" else "Copy Direct Reports",
        tenant_name=tenant_name,
        summary=result.summary(),
        tables={"changes": [r.to_dict() for r in result.records]},
        audit=guardian.get_audit_record(),
    )
    return report, EXIT_CHANGES_FAILED if result.has_failures else EXIT_OK


def run_acl_snapshot(args, config: ToolkitConfig, run_id: str) -> tuple[Report, int]:
    print(f"\n  Walking {args.path.resolve()}...\n")
    snap = snapshot(args.path, max_depth=args.max_depth, include_files=not args.dirs_only)

    saved = snap.save(config.output.reports_dir / f"acl_snapshot_{run_id}.snapshot.json")
    print(f"  💾 Snapshot:   {saved}")

    kinds = {"directory": 0, "file": 0, "symlink": 0, "other": 0}
    for e in snap.entries:
        if e.kind in kinds:
            kinds[e.kind] += 1
    summary = {
        "root": snap.root,
        "entries": len(snap.entries),
        "directories": kinds["directory"],
        "files": kinds["file"],
        "symlinks": kinds["symlink"],
        "other": kinds["other"],
        "with_extended_acl": sum(1 for e in snap.entries if e.acl or e.default_acl),
        "differs_from_parent": sum(1 for e in snap.entries if e.differs_from_parent),
        "errors": snap.error_count,
    }
    report = Report(
        command=args.command,
        run_id=run_id,
        title=f"Filesystem ACL Snapshot of {snap.root}",
        summary=summary,
        tables={"entries": [e.to_dict() for e in snap.entries]},
    )
    return report, EXIT_OK


def run_acl_diff(args, config: ToolkitConfig, run_id: str) -> tuple[Report, int]:
    old, new = Snapshot.load(args.old), Snapshot.load(args.new)
    delta = diff_snapshots(old, new)
    changed_rows = [
        {
            "path": c["path"],
            "fields": sorted(c["changes"]),
            "before": "; ".join(f"{k}={v[0]}" for k, v in sorted(c["changes"].items())),
            "after": "; ".join(f"{k}={v[1]}" for k, v in sorted(c["changes"].items())),
        }
        for c in delta["changed"]
    ]
    report = Report(
        command=args.command,
        run_id=run_id,
        title="Filesystem ACL Snapshot Comparison",
        summary={
            "old_snapshot": f"{old.root} @ {old.taken_at}",
            "new_snapshot": f"{new.root} @ {new.taken_at}",
            "added": len(delta["added"]),
            "removed": len(delta["removed"]),
            "changed": len(delta["changed"]),
        },
        tables={
            "added": [{"path": p} for p in delta["added"]],
            "removed": [{"path": p} for p in delta["removed"]],
            "changed": changed_rows,
        },
    )
    return report, EXIT_OK


def generate_reports(report: Report, output_dir: Path, formats: list[str]) -> list[Path]:
    """Generate all requested report formats."""
    created: list[Path] = []
    labels = {"json": "📄 JSON:    ", "csv": "📊 CSV:     ", "markdown": "📝 Markdown:"}
    for fmt in formats:
        exporter = EXPORTERS[fmt]
        paths = exporter(report, output_dir)
        paths = paths if isinstance(paths, list) else [paths]
        created.extend(paths)
        for p in paths:
            print(f"  {labels[fmt]} {p}")
    return created


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def _configure_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING if verbosity < 2 else logging.DEBUG)


def _tenant_name(args, config: ToolkitConfig, profile: Optional[TenantProfile]) -> str:
    if getattr(args, "tenant_name", None):
        return args.tenant_name
    if profile and profile.tenant_display_name:
        return profile.tenant_display_name
    return _tenant_key(config)


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_OK
    if args.command == "profile":
        return _cmd_profile(args)
    if args.command == "permissions":
        return _cmd_permissions()

    _configure_logging(getattr(args, "verbose", 0))

    print("=" * 70)
    print(f" Directory Admin Toolkit v{__version__} — {args.command}")
    print("=" * 70)

    try:
        config, profile = build_config(args)
        run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        tenant_name = _tenant_name(args, config, profile)
        config.output.create_directories()
        if profile:
            print(f"📋 Profile: {profile.name}")
        print(f"📂 Output:  {config.output.run_dir.resolve()}")

        if args.command == "reconcile-mailboxes":
            report, code = await run_reconcile(args, config, run_id, tenant_name)
        elif args.command == "audit-app-permissions":
            report, code = await run_app_audit(args, config, run_id, tenant_name)
        elif args.command in ("copy-groups", "copy-reports"):
            report, code = await run_copy(args, config, run_id, tenant_name)
        elif args.command == "acl-snapshot":
            report, code = run_acl_snapshot(args, config, run_id)
        else:
            report, code = run_acl_diff(args, config, run_id)

    except (ConfigurationError, AuthenticationError, DirectoryError,
            OperationError, SnapshotError, GraphAPIError) as e:
        print(f"\n❌ {e}")
        return EXIT_ERROR

    print("\n" + "=" * 70)
    print(" REPORTS")
    print("=" * 70 + "\n")
    for key, value in report.summary.items():
        print(f"  {key.replace('_', ' '):<28s} {value}")
    for f in report.findings:
        print(f"  ⚠  [{f.severity}] {f.control_name}")
    print()
    generate_reports(report, config.output.reports_dir, config.output.formats)
    print()
    return code


def main():
    """Synchronous entry point for `python -m directory_toolkit` and `dirtools`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
