"""
Base collector classes — the contract every data collector follows.
Collectors gather remote inventory; analyzers work on what they return.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..graph.client import GraphClient, GraphAPIError
from ..cache.store import RunCache
from ..config import CollectionConfig

logger = logging.getLogger("directory_toolkit.collectors")


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, list):
            self.metadata["items_collected"] += len(value)
        elif isinstance(value, dict):
            self.metadata["items_collected"] += 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    @property
    def failed(self) -> bool:
        return bool(self.metadata["errors"])

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "metadata": self.metadata,
        }


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect(). The base class provides:
      - Caching integration
      - Timing and metadata
      - Error containment
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(
        self,
        config: CollectionConfig,
        cache: Optional[RunCache] = None,
        run_id: str = "",
        cache_scope: str = "",
    ):
        self.config = config
        self.cache = cache
        self.run_id = run_id
        self.cache_scope = cache_scope

    @property
    def cache_key(self) -> str:
        return f"collector:{self.name}:{self.cache_scope}"

    async def execute(self) -> CollectorResult:
        """Execute the collector with timing, caching, and error handling."""
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            if self.cache:
                cached = self.cache.get(self.cache_key)
                if cached:
                    logger.info(f"[{self.name}] Using cached data.")
                    result.data = cached
                    result.metadata["from_cache"] = True
                    result.metadata["completed_at"] = time.time()
                    return result

            await self.collect(result)

            # Partial results are not cached
            if self.cache and result.data and not result.failed:
                self.cache.put(self.cache_key, result.data, self.run_id)

        except Exception as e:
            result.add_error(f"Collection failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Collection failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """
        Implement data collection logic.
        Add data to result via result.add_data(key, value).
        """
        raise NotImplementedError


class GraphCollector(BaseCollector):
    """Collector backed by Microsoft Graph, with permission-gap aware helpers."""

    def __init__(self, graph: GraphClient, config: CollectionConfig, **kwargs):
        super().__init__(config, **kwargs)
        self.graph = graph

    async def safe_get_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """Get all pages, recording permission gaps and errors instead of raising."""
        try:
            data = await self.graph.get_all_pages(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            return data
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_warning(f"Permission denied: {endpoint} — {e.message}")
                result.metadata.setdefault("permission_gaps", []).append(endpoint)
            else:
                result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []

    async def safe_get_all_stream(self, endpoint: str, result: CollectorResult, **kwargs):
        """Stream all pages as a generator, recording failures."""
        result.metadata["endpoints_queried"] += 1
        try:
            async for item in self.graph.get_all_pages_stream(endpoint, **kwargs):
                yield item
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_warning(f"Permission denied: {endpoint} — {e.message}")
                result.metadata.setdefault("permission_gaps", []).append(endpoint)
            else:
                result.add_error(f"Failed to stream {endpoint}: {e}")
