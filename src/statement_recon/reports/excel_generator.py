"""
Excel report generator for reconciliation results.
Creates multi-sheet workbooks with formatted output.
"""

from pathlib import Path
from typing import Any, Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import ReconConfig, SheetConfig
from ..models.candidate import ScoreBand, ScoredCandidate
from ..models.records import ReconciliationRecord, ReversalPair
from ..models.transaction import BankTransaction
from ..utils.exceptions import ReportGenerationError
from .summary import ReconciliationSummary

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
HIGH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
MEDIUM_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
LOW_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

BAND_FILLS = {
    ScoreBand.HIGH: HIGH_FILL,
    ScoreBand.MEDIUM: MEDIUM_FILL,
    ScoreBand.LOW: LOW_FILL,
}


class ExcelReportGenerator:
    """Generates Excel reconciliation reports with multiple sheets."""

    def __init__(self, config: Optional[ReconConfig] = None):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config or ReconConfig()
        self.sheet_config = self.config.output.sheets

    def generate_report(
        self,
        summary: ReconciliationSummary,
        suggestions: dict[str, list[ScoredCandidate]],
        records: list[ReconciliationRecord],
        pairs: list[ReversalPair],
        output_path: Path,
        transactions: Optional[dict[str, BankTransaction]] = None,
    ) -> Path:
        """
        Generate the complete reconciliation report.

        Args:
            summary: Reconciliation summary
            suggestions: Ranked suggestions keyed by bank transaction id
            records: Live reconciliation records
            pairs: Reversal pairs
            output_path: Path for output file
            transactions: Bank transactions by id, for date/amount columns

        Returns:
            Path to generated report
        """
        logger.info(f"Generating Excel report: {output_path}")
        transactions = transactions or {}

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        sheets = self.sheet_config
        if sheets.summary.enabled:
            self._create_summary_sheet(wb, sheets.summary, summary)
        if sheets.suggestions.enabled:
            self._create_suggestions_sheet(wb, sheets.suggestions, suggestions, transactions)
        if sheets.reconciled.enabled:
            self._create_reconciled_sheet(wb, sheets.reconciled, records, transactions)
        if sheets.differences.enabled:
            with_difference = [r for r in records if r.has_adjustment]
            self._create_differences_sheet(wb, sheets.differences, with_difference)
        if sheets.reversal_pairs.enabled:
            self._create_pairs_sheet(wb, sheets.reversal_pairs, pairs, transactions)

        if not wb.sheetnames:
            raise ReportGenerationError("All report sheets are disabled in the configuration")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Failed to write report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _create_summary_sheet(
        self, wb: Workbook, sheet: SheetConfig, summary: ReconciliationSummary
    ) -> None:
        """Create the summary sheet with key metrics."""
        ws = wb.create_sheet(sheet.name)

        ws["A1"] = "Bank Reconciliation Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        info = [
            ("Bank Account:", summary.bank_account_id or "All accounts"),
            ("Generated At:", summary.generated_at.strftime("%Y-%m-%d %H:%M:%S")),
            ("Statement Period:", f"{summary.period_start} to {summary.period_end}"),
        ]
        row = self._write_section(ws, 3, "Report Information", info)

        counts = [
            ("Total Transactions:", summary.total_count),
            ("Reconciled:", summary.reconciled_count),
            ("Unreconciled:", summary.unreconciled_count),
            ("Paired Reversals:", summary.paired_reversal_count),
            ("Reconciliation %:", f"{summary.reconciliation_percentage:.1f}%"),
        ]
        row = self._write_section(ws, row + 1, "Transaction Counts", counts)

        amounts = [
            ("Total Credits:", f"₹{summary.total_credits:,.2f}"),
            ("Total Debits:", f"₹{summary.total_debits:,.2f}"),
            ("Net Change:", f"₹{summary.net_change:,.2f}"),
            ("Unreconciled Credits:", f"₹{summary.unreconciled_credits:,.2f}"),
            ("Unreconciled Debits:", f"₹{summary.unreconciled_debits:,.2f}"),
        ]
        row = self._write_section(ws, row + 1, "Amount Totals", amounts)

        differences = [
            (f"{kind}:", f"₹{amount:,.2f}")
            for kind, amount in sorted(summary.difference_totals.items())
        ]
        row = self._write_section(ws, row + 1, "Differences by Type", differences)

        tds = [
            (f"Section {section}:", f"₹{amount:,.2f}")
            for section, amount in sorted(summary.tds_by_section.items())
        ]
        tds.append(("Total TDS:", f"₹{summary.total_tds:,.2f}"))
        self._write_section(ws, row + 1, "TDS by Section", tds)

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 40

    def _write_section(
        self, ws: Worksheet, row: int, title: str, items: list[tuple[str, Any]]
    ) -> int:
        ws[f"A{row}"] = title
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        for label, value in items:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1
        return row

    def _write_headers(self, ws: Worksheet, headers: list[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center")

    def _create_suggestions_sheet(
        self,
        wb: Workbook,
        sheet: SheetConfig,
        suggestions: dict[str, list[ScoredCandidate]],
        transactions: dict[str, BankTransaction],
    ) -> None:
        """Create the ranked suggestions sheet, one row per candidate."""
        ws = wb.create_sheet(sheet.name)
        self._write_headers(
            ws,
            [
                "Bank Transaction",
                "Bank Date",
                "Bank Amount",
                "Rank",
                "Candidate Type",
                "Candidate ID",
                "Candidate",
                "Candidate Date",
                "Candidate Amount",
                "Amount Difference",
                "Date Difference (Days)",
                "Score",
                "Band",
                "Match Reason",
            ],
        )

        row_num = 2
        for transaction_id, ranked in suggestions.items():
            txn = transactions.get(transaction_id)
            for rank, scored in enumerate(ranked, start=1):
                candidate = scored.candidate
                row_data = [
                    transaction_id,
                    txn.transaction_date if txn else "",
                    float(txn.amount) if txn else "",
                    rank,
                    candidate.reconciled_type,
                    candidate.candidate_id,
                    candidate.display_name,
                    candidate.candidate_date or "",
                    float(candidate.amount),
                    float(scored.amount_difference),
                    scored.date_difference_days if scored.date_difference_days is not None else "",
                    scored.score,
                    scored.band.value,
                    scored.match_reason,
                ]
                for col, value in enumerate(row_data, start=1):
                    cell = ws.cell(row=row_num, column=col, value=value)
                    cell.border = THIN_BORDER
                    if col in (12, 13):
                        cell.fill = BAND_FILLS[scored.band]
                row_num += 1

        self._auto_fit_columns(ws)

    def _create_reconciled_sheet(
        self,
        wb: Workbook,
        sheet: SheetConfig,
        records: list[ReconciliationRecord],
        transactions: dict[str, BankTransaction],
    ) -> None:
        """Create the committed reconciliations sheet."""
        ws = wb.create_sheet(sheet.name)
        self._write_headers(
            ws,
            [
                "Bank Transaction",
                "Bank Date",
                "Direction",
                "Bank Amount",
                "Reconciled Type",
                "Reconciled ID",
                "Reconciled By",
                "Reconciled At",
                "Difference Type",
                "Difference Amount",
            ],
        )

        for row_num, record in enumerate(records, start=2):
            txn = transactions.get(record.transaction_id)
            difference = record.difference
            row_data = [
                record.transaction_id,
                txn.transaction_date if txn else "",
                txn.direction.value if txn else "",
                float(txn.amount) if txn else "",
                record.reconciled_type,
                record.reconciled_id,
                record.reconciled_by,
                record.reconciled_at.strftime("%Y-%m-%d %H:%M:%S"),
                difference.difference_type.value if difference else "",
                float(difference.difference_amount) if difference else "",
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                if difference and col in (9, 10):
                    cell.fill = MEDIUM_FILL

        self._auto_fit_columns(ws)

    def _create_differences_sheet(
        self, wb: Workbook, sheet: SheetConfig, records: list[ReconciliationRecord]
    ) -> None:
        """Create the classified differences sheet."""
        ws = wb.create_sheet(sheet.name)
        self._write_headers(
            ws,
            [
                "Bank Transaction",
                "Reconciled ID",
                "Difference Type",
                "Difference Amount",
                "TDS Section",
                "Adjustment Journal",
                "Notes",
            ],
        )

        for row_num, record in enumerate(records, start=2):
            difference = record.difference
            row_data = [
                record.transaction_id,
                record.reconciled_id,
                difference.difference_type.value,
                float(difference.difference_amount),
                difference.tds_section or "",
                record.adjustment_journal_ref or "",
                difference.notes or "",
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = MEDIUM_FILL

        self._auto_fit_columns(ws)

    def _create_pairs_sheet(
        self,
        wb: Workbook,
        sheet: SheetConfig,
        pairs: list[ReversalPair],
        transactions: dict[str, BankTransaction],
    ) -> None:
        """Create the reversal pairs sheet."""
        ws = wb.create_sheet(sheet.name)
        self._write_headers(
            ws,
            [
                "Reversal",
                "Reversal Date",
                "Original",
                "Original Date",
                "Amount",
                "Posted to Ledger",
                "Reversal Journal",
                "Paired By",
                "Paired At",
                "Notes",
            ],
        )

        for row_num, pair in enumerate(pairs, start=2):
            reversal = transactions.get(pair.reversal_transaction_id)
            original = transactions.get(pair.original_transaction_id)
            row_data = [
                pair.reversal_transaction_id,
                reversal.transaction_date if reversal else "",
                pair.original_transaction_id,
                original.transaction_date if original else "",
                float(reversal.amount) if reversal else "",
                "Yes" if pair.original_was_posted_to_ledger else "No",
                (reversal.reversal_journal_ref if reversal else None) or "",
                pair.paired_by,
                pair.paired_at.strftime("%Y-%m-%d %H:%M:%S"),
                pair.notes or "",
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER

        self._auto_fit_columns(ws)

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            column = column_cells[0].column_letter
            max_length = max(
                (len(str(cell.value)) for cell in column_cells if cell.value is not None),
                default=0,
            )
            ws.column_dimensions[column].width = min(max_length + 2, 50)
