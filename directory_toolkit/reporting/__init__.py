"""Reporting package — multi-format output generation."""

from .report import Report
from .json_export import export_json
from .csv_export import export_csv
from .markdown_report import export_markdown

EXPORTERS = {
    "json": export_json,
    "csv": export_csv,
    "markdown": export_markdown,
}

__all__ = [
    "Report",
    "export_json",
    "export_csv",
    "export_markdown",
    "EXPORTERS",
]
