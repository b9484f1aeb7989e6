"""
Copy routines — replicate one user's group memberships onto another, and
move a manager's direct reports to a new manager.

Both routines plan first and only write when the change guardian is in
apply mode. A failed change is recorded and the remaining changes proceed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict

from .backends import MembershipBackend
from ..directory.client import DirectoryError
from ..directory.models import DirectoryUser
from ..graph.client import GraphAPIError
from ..safety.guardian import ChangeGuardian, SafetyViolation

logger = logging.getLogger("directory_toolkit.operations")

STATUS_PLANNED = "planned"
STATUS_APPLIED = "applied"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

# Errors confined to a single change
CHANGE_ERRORS = (GraphAPIError, DirectoryError, SafetyViolation)


class OperationError(Exception):
    """Raised when a copy routine cannot start (unknown or identical users)."""
    pass


@dataclass
class ChangeRecord:
    action: str          # add_member or set_manager
    subject: str         # user being changed
    target: str          # group or manager
    status: str
    detail: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CopyResult:
    operation: str
    backend: str
    source: str
    target: str
    dry_run: bool
    records: list[ChangeRecord] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.records if r.status == status)

    @property
    def has_failures(self) -> bool:
        return self.count(STATUS_FAILED) > 0

    def summary(self) -> dict:
        return {
            "operation": self.operation,
            "backend": self.backend,
            "source": self.source,
            "target": self.target,
            "dry_run": self.dry_run,
            STATUS_PLANNED: self.count(STATUS_PLANNED),
            STATUS_APPLIED: self.count(STATUS_APPLIED),
            STATUS_SKIPPED: self.count(STATUS_SKIPPED),
            STATUS_FAILED: self.count(STATUS_FAILED),
        }


async def _resolve_pair(
    backend: MembershipBackend,
    source_identity: str,
    target_identity: str,
) -> tuple[DirectoryUser, DirectoryUser]:
    source = await backend.resolve_user(source_identity)
    if source is None:
        raise OperationError(f"Source user not found: {source_identity}")
    target = await backend.resolve_user(target_identity)
    if target is None:
        raise OperationError(f"Target user not found: {target_identity}")
    if source.id == target.id:
        raise OperationError(f"Source and target are the same user: {source}")
    return source, target


async def copy_group_memberships(
    backend: MembershipBackend,
    source_identity: str,
    target_identity: str,
    guardian: ChangeGuardian,
) -> CopyResult:
    """Add the target user to every group the source user directly belongs to."""
    source, target = await _resolve_pair(backend, source_identity, target_identity)
    result = CopyResult("copy_group_memberships", backend.name, str(source), str(target), guardian.dry_run)

    source_groups = await backend.groups_of(source)
    target_group_ids = {g.id.lower() for g in await backend.groups_of(target)}
    logger.info(
        f"{source} is in {len(source_groups)} groups; "
        f"{target} is in {len(target_group_ids)}"
    )

    for group in source_groups:
        record = ChangeRecord("add_member", str(target), group.name or group.id, STATUS_PLANNED)
        result.records.append(record)

        if group.id.lower() in target_group_ids:
            record.status, record.detail = STATUS_SKIPPED, "already a member"
            continue
        if not group.manageable:
            record.status, record.detail = STATUS_SKIPPED, group.reason
            continue
        if guardian.dry_run:
            continue

        try:
            added = await backend.add_member(group, target)
        except CHANGE_ERRORS as e:
            record.status, record.detail = STATUS_FAILED, str(e)
            logger.error(f"Adding {target} to {group.name or group.id} failed: {e}")
            continue
        if added:
            record.status = STATUS_APPLIED
        else:
            record.status, record.detail = STATUS_SKIPPED, "already a member"

    return result


async def copy_direct_reports(
    backend: MembershipBackend,
    source_identity: str,
    target_identity: str,
    guardian: ChangeGuardian,
) -> CopyResult:
    """Point every direct report of the source manager at the target manager."""
    source, target = await _resolve_pair(backend, source_identity, target_identity)
    result = CopyResult("copy_direct_reports", backend.name, str(source), str(target), guardian.dry_run)

    reports = await backend.direct_reports(source)
    logger.info(f"{source} has {len(reports)} direct reports")

    for report in reports:
        record = ChangeRecord("set_manager", str(report), str(target), STATUS_PLANNED)
        result.records.append(record)

        if report.id == target.id:
            record.status, record.detail = STATUS_SKIPPED, "report is the new manager"
            continue
        if guardian.dry_run:
            continue

        try:
            await backend.set_manager(report, target)
        except CHANGE_ERRORS as e:
            record.status, record.detail = STATUS_FAILED, str(e)
            logger.error(f"Setting manager of {report} failed: {e}")
            continue
        record.status = STATUS_APPLIED

    return result
