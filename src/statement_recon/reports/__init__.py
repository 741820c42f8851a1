"""Reconciliation summaries and Excel reports."""

from .excel_generator import ExcelReportGenerator
from .summary import ReconciliationSummary, build_summary

__all__ = ["ExcelReportGenerator", "ReconciliationSummary", "build_summary"]
