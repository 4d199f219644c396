"""Report generation and formatting."""

from clarity.digests.report import (
    ClarityReport,
    ReportGenerator,
    SiteSummary,
    generate_report,
)
from clarity.digests.formatter import (
    ReportFormatter,
    format_json,
    format_text,
)

__all__ = [
    # Report
    "ClarityReport",
    "ReportGenerator",
    "SiteSummary",
    "generate_report",
    # Formatter
    "ReportFormatter",
    "format_json",
    "format_text",
]
