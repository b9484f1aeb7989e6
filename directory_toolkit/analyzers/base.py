"""
Base analyzer class — Abstract interface for all analysis modules.
Defines the Finding data model and analyzer contract.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("directory_toolkit.analyzers")

SEVERITY_ORDER = ["critical", "high", "medium", "low", "informational"]


@dataclass
class Finding:
    """A single noteworthy result of an analysis."""
    id: str                              # Unique finding ID (e.g., "MBX-001")
    domain: str                          # mailbox_reconciliation, app_permissions
    control_name: str                    # Human-readable title
    detection_logic: str                 # How this was detected
    evidence: Any = None                 # Extracted evidence data
    risk_explanation: str = ""           # Why this matters
    remediation: str = ""                # What an administrator should do
    severity: str = "medium"             # critical, high, medium, low, informational

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "domain": self.domain,
            "control_name": self.control_name,
            "detection_logic": self.detection_logic,
            "evidence": self.evidence,
            "risk_explanation": self.risk_explanation,
            "remediation": self.remediation,
            "severity": self.severity,
        }


class BaseAnalyzer(ABC):
    """
    Abstract base class for all analyzers.
    Analyzers receive collected data and produce findings.
    """

    name: str = "base"
    domain: str = "general"
    prefix: str = "GEN"
    description: str = "Base analyzer"

    def __init__(self):
        self.findings: list[Finding] = []
        self._finding_counter = 0

    def analyze(self, collected_data: dict[str, Any]) -> list[Finding]:
        """
        Execute analysis and return findings.
        Subclasses implement _analyze() with specific logic.
        """
        self.findings = []
        self._finding_counter = 0

        try:
            self._analyze(collected_data)
        except Exception as e:
            logger.exception(f"[{self.name}] Analysis failed: {e}")
            self.findings.append(Finding(
                id=f"{self.prefix}-ERR",
                domain=self.domain,
                control_name=f"{self.name} Analysis Error",
                detection_logic="Analyzer encountered an exception",
                evidence={"error": str(e)},
                severity="informational",
                risk_explanation=f"Analysis module {self.name} failed to complete",
            ))

        logger.info(f"[{self.name}] Analysis complete — {len(self.findings)} findings")
        return self.findings

    @abstractmethod
    def _analyze(self, data: dict[str, Any]):
        """Implement analysis logic. Add findings via self.add_finding()."""
        raise NotImplementedError

    def add_finding(self, **kwargs) -> Finding:
        """Create and register a new finding."""
        self._finding_counter += 1
        finding_id = kwargs.pop("id", f"{self.prefix}-{self._finding_counter:03d}")

        finding = Finding(
            id=finding_id,
            domain=self.domain,
            **kwargs,
        )
        self.findings.append(finding)
        return finding
