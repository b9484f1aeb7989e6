"""
Change Guardian — Gatekeeper for every write the toolkit can perform.
Reads are always allowed; writes only in apply mode and only against an
allow-list of endpoints and directory attributes.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("directory_toolkit.safety")

# ─── Allowed Writes ──────────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Read-only POST endpoints (Graph uses POST for some queries)
READ_ONLY_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),                        # Batch read requests
]

# Writes the copy routines are permitted to make
ALLOWED_WRITE_ENDPOINTS = {
    "POST": [re.compile(r"/groups/[^/]+/members/\$ref$", re.IGNORECASE)],
    "PUT": [re.compile(r"/users/[^/]+/manager/\$ref$", re.IGNORECASE)],
}

ALLOWED_LDAP_ATTRIBUTES = {"member", "manager"}


class SafetyViolation(Exception):
    """Raised when a write is attempted outside apply mode or the allow-list."""
    pass


class ChangeGuardian:
    """
    Validates every outbound write before it is executed.
    Maintains an audit log of applied changes and blocked attempts.
    """

    def __init__(self, apply: bool = False):
        self.apply = apply
        self.violations: list[dict] = []
        self.changes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = _utcnow()

    @property
    def dry_run(self) -> bool:
        return not self.apply

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate an HTTP request.
        Returns True if allowed, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            for pattern in READ_ONLY_POST_ENDPOINTS:
                if pattern.search(url):
                    return True

        if method_upper not in WRITE_METHODS:
            return True

        allowed = any(p.search(url) for p in ALLOWED_WRITE_ENDPOINTS.get(method_upper, []))
        if not allowed:
            self._record_violation(method_upper, url, "Write endpoint not on allow-list")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write endpoint not allowed: {method_upper} {url}"
            )
        if self.dry_run:
            self._record_violation(method_upper, url, "Write attempted in dry-run mode")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Dry-run mode blocks {method_upper} {url}"
            )

        self._record_change(method_upper, url)
        return True

    def validate_ldap_modify(self, dn: str, attribute: str) -> bool:
        """Validate a directory modify against the attribute allow-list."""
        self.checks_performed += 1
        target = f"{dn} [{attribute}]"

        if attribute.lower() not in ALLOWED_LDAP_ATTRIBUTES:
            self._record_violation("MODIFY", target, "Directory attribute not on allow-list")
            raise SafetyViolation(f"SAFETY VIOLATION: Attribute not allowed: {attribute} on {dn}")
        if self.dry_run:
            self._record_violation("MODIFY", target, "Write attempted in dry-run mode")
            raise SafetyViolation(f"SAFETY VIOLATION: Dry-run mode blocks modify of {target}")

        self._record_change("MODIFY", target)
        return True

    def _record_change(self, method: str, target: str):
        self.changes.append({
            "timestamp": _utcnow(),
            "method": method,
            "target": target,
        })
        logger.info(f"Change permitted: {method} {target}")

    def _record_violation(self, method: str, target: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": _utcnow(),
            "method": method,
            "target": target,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {target}")

    def get_audit_record(self) -> dict:
        """Return the full change audit record."""
        return {
            "change_guardian": {
                "mode": "APPLY" if self.apply else "DRY-RUN",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "changes_permitted": len(self.changes),
                "changes": self.changes,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self):
        """Print the mode banner."""
        print("=" * 75)
        if self.dry_run:
            print("  DRY-RUN -- NO CHANGES WILL BE MADE")
            print("  * Planned changes are reported, not executed")
            print("  * Re-run with --apply to perform them")
        else:
            print("  APPLY MODE -- CHANGES WILL BE WRITTEN")
            print("  * Only group membership and manager updates are permitted")
            print("  * Every write is validated and recorded in the audit log")
        print("=" * 75)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
