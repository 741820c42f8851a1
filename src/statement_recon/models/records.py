"""Committed reconciliation outcomes, difference adjustments, pairs and allocations."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..utils.exceptions import ValidationError
from .transaction import Direction


class DifferenceType(Enum):
    """Closed taxonomy of accounted-for bank vs. record differences."""

    BANK_INTEREST = "bank_interest"  # Interest income credited by bank
    BANK_CHARGES = "bank_charges"  # Fees/charges deducted by bank
    TDS_DEDUCTED = "tds_deducted"  # TDS deducted by customer (receivable)
    ROUND_OFF = "round_off"  # Minor rounding difference
    FOREX_GAIN = "forex_gain"
    FOREX_LOSS = "forex_loss"
    OTHER_INCOME = "other_income"
    OTHER_EXPENSE = "other_expense"
    SUSPENSE = "suspense"  # Park for later investigation


@dataclass
class DifferencePreset:
    """
    Preview of an over-threshold difference awaiting operator confirmation.

    ``suggested_type`` is only a default; ``DifferenceClassifier.confirm``
    decides the final type.
    """

    transaction_amount: Decimal
    candidate_amount: Decimal
    direction: Direction
    difference_amount: Decimal  # bank amount - candidate amount
    suggested_type: DifferenceType


@dataclass
class DifferenceClassification:
    """A confirmed, typed difference attached to a reconciliation commit."""

    difference_amount: Decimal
    difference_type: DifferenceType
    notes: Optional[str] = None
    tds_section: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.difference_amount, Decimal):
            self.difference_amount = Decimal(str(self.difference_amount))
        if not isinstance(self.difference_type, DifferenceType):
            try:
                self.difference_type = DifferenceType(str(self.difference_type).strip().lower())
            except ValueError as e:
                raise ValidationError(f"Unknown difference type: {self.difference_type!r}") from e
        if self.difference_type is not DifferenceType.TDS_DEDUCTED:
            self.tds_section = None


@dataclass
class ReconciliationRecord:
    """The single live reconciliation outcome of one bank transaction."""

    transaction_id: str
    reconciled_type: str
    reconciled_id: str
    reconciled_by: str
    reconciled_at: datetime = field(default_factory=datetime.now)
    difference: Optional[DifferenceClassification] = None
    adjustment_journal_ref: Optional[str] = None

    @property
    def has_adjustment(self) -> bool:
        return self.difference is not None


@dataclass
class ReversalPair:
    """Links a reversal credit to the original debit it undoes."""

    reversal_transaction_id: str
    original_transaction_id: str
    original_was_posted_to_ledger: bool
    paired_by: str
    paired_at: datetime = field(default_factory=datetime.now)
    notes: Optional[str] = None

    def involves(self, transaction_id: str) -> bool:
        return transaction_id in (self.reversal_transaction_id, self.original_transaction_id)


@dataclass
class PairingResult:
    """Outcome of pairing a reversal with its original."""

    pair: ReversalPair
    reversal_journal_ref: Optional[str]
    warnings: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def requires_ledger_correction(self) -> bool:
        return self.pair.original_was_posted_to_ledger


class BillStatus(Enum):
    """Settlement status derived from allocations."""

    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"


@dataclass
class Bill:
    """A billable document (invoice or vendor bill) payments settle."""

    bill_id: str
    total_amount: Decimal
    base_status: str = "unpaid"

    def __post_init__(self) -> None:
        if not isinstance(self.total_amount, Decimal):
            self.total_amount = Decimal(str(self.total_amount))


@dataclass
class Allocation:
    """One slice of a payment applied to one bill."""

    payment_id: str
    bill_id: str
    allocated_amount: Decimal
    allocation_date: date = field(default_factory=date.today)


@dataclass
class PaymentAllocationSummary:
    """How much of a payment is spread across bills."""

    payment_id: str
    payment_amount: Decimal
    allocations: list[Allocation]

    @property
    def allocated(self) -> Decimal:
        return sum((a.allocated_amount for a in self.allocations), Decimal("0"))

    @property
    def unallocated(self) -> Decimal:
        return self.payment_amount - self.allocated
