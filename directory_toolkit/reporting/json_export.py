"""
JSON exporter — Produces the full JSON output of a run.
"""

from __future__ import annotations

import json
from pathlib import Path

from .. import __version__
from .report import Report


def export_json(report: Report, output_dir: Path) -> Path:
    """
    Write the full report to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "Directory Admin Toolkit",
            "version": __version__,
            "command": report.command,
            "run_id": report.run_id,
            "tenant": report.tenant_name,
            "generated_utc": report.generated_utc,
        },
        "summary": report.summary,
        "findings": [f.to_dict() for f in report.findings],
        "tables": report.tables,
        "audit": report.audit,
    }

    filepath = output_dir / f"{report.file_stem}.json"
    with open(filepath, "w", encoding="utf-8", errors="surrogateescape") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
