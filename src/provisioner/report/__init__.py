"""
Passkey Report.

Lists which users have which security keys registered.
"""

from provisioner.report.builder import (
    REPORT_HEADER,
    ReportBuilder,
    ReportRow,
    format_report_table,
    write_report_csv,
)

__all__ = [
    "REPORT_HEADER",
    "ReportBuilder",
    "ReportRow",
    "format_report_table",
    "write_report_csv",
]
