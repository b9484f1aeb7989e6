"""
CSV exporter — One CSV per tabular section of a report, plus findings.
"""

from __future__ import annotations

import csv
from pathlib import Path

from .report import Report

FINDING_FIELDS = [
    "id", "domain", "control_name", "severity",
    "detection_logic", "risk_explanation", "remediation", "evidence_summary",
]


def _cell(value) -> object:
    """Flatten list values so they fit one cell."""
    if isinstance(value, (list, tuple, set)):
        return "; ".join(str(v) for v in value)
    return value


def export_csv(report: Report, output_dir: Path) -> list[Path]:
    """
    Write CSV files for every table and for the findings.

    Returns:
        List of created CSV file paths. Empty tables still get a file with
        whatever header can be inferred (none when there are no rows).
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    for name, rows in report.tables.items():
        path = output_dir / f"{report.file_stem}_{name}.csv"
        fieldnames: list[str] = []
        for row in rows:
            for key in row:
                if key not in fieldnames:
                    fieldnames.append(key)

        with open(path, "w", newline="", encoding="utf-8-sig", errors="surrogateescape") as fh:
            writer = csv.DictWriter(fh, fieldnames=fieldnames, extrasaction="ignore")
            if fieldnames:
                writer.writeheader()
            for row in rows:
                writer.writerow({k: _cell(v) for k, v in row.items()})
        created.append(path)

    if report.findings:
        findings_path = output_dir / f"{report.file_stem}_findings.csv"
        with open(findings_path, "w", newline="", encoding="utf-8-sig", errors="surrogateescape") as fh:
            writer = csv.DictWriter(fh, fieldnames=FINDING_FIELDS, extrasaction="ignore")
            writer.writeheader()
            for f in report.findings:
                row = {field: getattr(f, field, "") for field in FINDING_FIELDS}
                if isinstance(f.evidence, dict):
                    row["evidence_summary"] = "; ".join(
                        f"{k}={v}" for k, v in f.evidence.items()
                    )
                writer.writerow(row)
        created.append(findings_path)

    return created
