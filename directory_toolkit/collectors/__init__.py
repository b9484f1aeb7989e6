from .base import BaseCollector, GraphCollector, CollectorResult
from .mailboxes import MailboxCollector
from .apps import AppPermissionCollector
from .ad_accounts import AdAccountCollector

__all__ = [
    "BaseCollector",
    "GraphCollector",
    "CollectorResult",
    "MailboxCollector",
    "AppPermissionCollector",
    "AdAccountCollector",
]
