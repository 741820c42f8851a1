"""Reconciliation status summary for a bank account."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from ..models.records import DifferenceType, ReconciliationRecord
from ..models.transaction import BankTransaction, Direction, PairType

ZERO = Decimal("0")


@dataclass
class ReconciliationSummary:
    """Summary of reconciliation progress over a set of bank transactions."""

    bank_account_id: Optional[str]
    generated_at: datetime
    period_start: Optional[date]
    period_end: Optional[date]

    # Transaction counts
    total_count: int
    reconciled_count: int
    unreconciled_count: int
    paired_reversal_count: int

    # Amount totals
    total_credits: Decimal
    total_debits: Decimal
    reconciled_credits: Decimal
    reconciled_debits: Decimal

    # Adjustments booked at reconciliation
    difference_totals: dict[str, Decimal] = field(default_factory=dict)
    tds_by_section: dict[str, Decimal] = field(default_factory=dict)

    @property
    def net_change(self) -> Decimal:
        """Net change from bank transactions (credits - debits)."""
        return self.total_credits - self.total_debits

    @property
    def reconciliation_percentage(self) -> float:
        """Share of transactions that are reconciled or paired as reversals."""
        if self.total_count == 0:
            return 0.0
        settled = self.total_count - self.unreconciled_count
        return round(settled / self.total_count * 100, 2)

    @property
    def unreconciled_credits(self) -> Decimal:
        return self.total_credits - self.reconciled_credits

    @property
    def unreconciled_debits(self) -> Decimal:
        return self.total_debits - self.reconciled_debits

    @property
    def total_tds(self) -> Decimal:
        return sum(self.tds_by_section.values(), ZERO)


def build_summary(
    transactions: Iterable[BankTransaction],
    records: Iterable[ReconciliationRecord],
    bank_account_id: Optional[str] = None,
) -> ReconciliationSummary:
    """
    Summarize reconciliation state.

    Args:
        transactions: Bank transactions in scope
        records: Live reconciliation records (others are ignored)
        bank_account_id: Restrict to one account

    Returns:
        Counts, credit/debit totals, difference totals by type and TDS totals
        by section. Paired reversals are counted once per pair.
    """
    txns = [
        t for t in transactions if bank_account_id is None or t.bank_account_id == bank_account_id
    ]
    in_scope = {t.id for t in txns}

    total_credits = ZERO
    total_debits = ZERO
    reconciled_credits = ZERO
    reconciled_debits = ZERO
    reconciled_count = 0
    unreconciled_count = 0
    paired_count = 0

    for txn in txns:
        if txn.direction is Direction.CREDIT:
            total_credits += txn.amount
        else:
            total_debits += txn.amount

        if txn.pair_type is PairType.REVERSAL:
            paired_count += 1
        if txn.is_reconciled:
            reconciled_count += 1
            if txn.direction is Direction.CREDIT:
                reconciled_credits += txn.amount
            else:
                reconciled_debits += txn.amount
        elif not txn.is_paired:
            unreconciled_count += 1

    difference_totals: dict[str, Decimal] = {}
    tds_by_section: dict[str, Decimal] = {}
    for record in records:
        if record.transaction_id not in in_scope or record.difference is None:
            continue
        difference = record.difference
        key = difference.difference_type.value
        difference_totals[key] = difference_totals.get(key, ZERO) + difference.difference_amount
        if difference.difference_type is DifferenceType.TDS_DEDUCTED:
            section = difference.tds_section or "unspecified"
            # TDS is a short receipt, so the difference is negative
            tds_by_section[section] = tds_by_section.get(section, ZERO) + abs(
                difference.difference_amount
            )

    dates = [t.transaction_date for t in txns]
    return ReconciliationSummary(
        bank_account_id=bank_account_id,
        generated_at=datetime.now(),
        period_start=min(dates) if dates else None,
        period_end=max(dates) if dates else None,
        total_count=len(txns),
        reconciled_count=reconciled_count,
        unreconciled_count=unreconciled_count,
        paired_reversal_count=paired_count,
        total_credits=total_credits,
        total_debits=total_debits,
        reconciled_credits=reconciled_credits,
        reconciled_debits=reconciled_debits,
        difference_totals=difference_totals,
        tds_by_section=tds_by_section,
    )
