"""
Active Directory Account Collector
Reads every user account under the configured base DN over LDAP.
"""

from __future__ import annotations

import asyncio

from .base import BaseCollector, CollectorResult
from ..config import CollectionConfig
from ..directory.client import DirectoryClient


class AdAccountCollector(BaseCollector):
    name = "ad_accounts"
    description = "On-premises user accounts"

    def __init__(self, directory: DirectoryClient, config: CollectionConfig, **kwargs):
        super().__init__(config, **kwargs)
        self.directory = directory

    async def collect(self, result: CollectorResult):
        # ldap3 is synchronous; keep the event loop free for Graph collectors
        accounts = await asyncio.to_thread(
            self.directory.list_accounts,
            self.config.include_disabled_accounts,
        )
        result.metadata["endpoints_queried"] += 1
        result.add_data("accounts", [a.to_dict() for a in accounts])

    @property
    def cache_key(self) -> str:
        # Enabled-only and full inventories are cached apart
        return f"{super().cache_key}:{int(self.config.include_disabled_accounts)}"
