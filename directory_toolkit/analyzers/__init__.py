from .base import BaseAnalyzer, Finding
from .mailbox_reconciler import MailboxReconciler, ReconciliationResult, reconcile
from .app_analyzer import AppPermissionAnalyzer, PermissionGrant, flatten

__all__ = [
    "BaseAnalyzer",
    "Finding",
    "MailboxReconciler",
    "ReconciliationResult",
    "reconcile",
    "AppPermissionAnalyzer",
    "PermissionGrant",
    "flatten",
]
