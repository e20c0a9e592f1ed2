"""
Batch report generation and formatting.
"""

from .formatters import export_report_csv, export_report_json, format_report_console
from .generator import (
    STATUS_FAIL,
    STATUS_NO_DATA,
    STATUS_PASS,
    DiscrepancyType,
    generate_report,
)

__all__ = [
    "generate_report",
    "DiscrepancyType",
    "STATUS_PASS",
    "STATUS_FAIL",
    "STATUS_NO_DATA",
    "export_report_json",
    "export_report_csv",
    "format_report_console",
]
