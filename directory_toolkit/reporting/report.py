"""
Report model — what every sub-command hands to the exporters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Report:
    command: str                                  # e.g. reconcile-mailboxes
    run_id: str
    title: str
    tenant_name: str = ""
    summary: dict[str, Any] = field(default_factory=dict)
    tables: dict[str, list[dict]] = field(default_factory=dict)
    findings: list = field(default_factory=list)
    audit: dict[str, Any] = field(default_factory=dict)
    generated_utc: str = ""

    def __post_init__(self):
        if not self.generated_utc:
            self.generated_utc = datetime.now(timezone.utc).isoformat()

    @property
    def file_stem(self) -> str:
        return f"{self.command.replace('-', '_')}_{self.run_id}"
