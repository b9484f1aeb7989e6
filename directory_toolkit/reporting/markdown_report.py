"""
Markdown report — Human-readable summary rendered via Jinja2.
"""

from __future__ import annotations

import json
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .. import __version__
from ..analyzers.base import SEVERITY_ORDER
from .report import Report

TEMPLATE_DIR = Path(__file__).parent / "templates"
TEMPLATE_NAME = "report.md.j2"

# Rows shown per table; the CSV export carries the rest
TABLE_PREVIEW_ROWS = 50

_SEVERITY_ICONS = {
    "critical": "🔴",
    "high":     "🟠",
    "medium":   "🟡",
    "low":      "🟢",
    "informational": "⚪",
}


def _severity_rank(severity: str) -> int:
    severity = (severity or "").lower()
    return SEVERITY_ORDER.index(severity) if severity in SEVERITY_ORDER else len(SEVERITY_ORDER)


def _md_cell(value) -> str:
    if isinstance(value, (list, tuple, set)):
        value = ", ".join(str(v) for v in value)
    return str(value).replace("|", "\\|").replace("\n", " ")


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["md_cell"] = _md_cell
    env.filters["to_json"] = lambda v: json.dumps(v, indent=2, default=str, ensure_ascii=False)
    return env


def render_markdown(report: Report) -> str:
    findings = sorted(
        report.findings,
        key=lambda f: _severity_rank(f.severity),
    )
    tables = {}
    for name, rows in report.tables.items():
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        tables[name] = {
            "columns": columns,
            "rows": rows[:TABLE_PREVIEW_ROWS],
            "total": len(rows),
        }

    template = _build_env().get_template(TEMPLATE_NAME)
    return template.render(
        report=report,
        version=__version__,
        findings=findings,
        tables=tables,
        severity_icons=_SEVERITY_ICONS,
        preview_rows=TABLE_PREVIEW_ROWS,
    )


def export_markdown(report: Report, output_dir: Path) -> Path:
    """Generate the Markdown report and return its path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"{report.file_stem}.md"

    with open(filepath, "w", encoding="utf-8", errors="surrogateescape") as fh:
        fh.write(render_markdown(report))

    return filepath
