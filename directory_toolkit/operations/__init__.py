from .backends import MembershipBackend, LdapBackend, GraphBackend
from .copy import (
    ChangeRecord,
    CopyResult,
    OperationError,
    copy_group_memberships,
    copy_direct_reports,
)

__all__ = [
    "MembershipBackend",
    "LdapBackend",
    "GraphBackend",
    "ChangeRecord",
    "CopyResult",
    "OperationError",
    "copy_group_memberships",
    "copy_direct_reports",
]
