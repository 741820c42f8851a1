"""Bank statement transaction model."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..utils.exceptions import ValidationError


class Direction(Enum):
    """Transaction direction from the bank's perspective."""

    CREDIT = "credit"  # Money in (receipts, refunds, reversals)
    DEBIT = "debit"  # Money out (payouts, charges)


class ReconciliationStatus(Enum):
    """Reconciliation state of a bank transaction."""

    UNRECONCILED = "unreconciled"
    RECONCILED = "reconciled"


class PairType(Enum):
    """Role of a transaction inside a reversal pair."""

    ORIGINAL = "original"
    REVERSAL = "reversal"


def parse_direction(value: "Direction | str") -> Direction:
    """Accept a Direction or its string value ('credit' / 'debit', any case)."""
    if isinstance(value, Direction):
        return value
    try:
        return Direction(str(value).strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown transaction direction: {value!r}") from e


@dataclass
class BankTransaction:
    """
    One bank statement line.

    Created by import or manual entry outside the engine; only the
    reconciliation ledger and the reversal detector change its state.
    """

    id: str
    bank_account_id: str
    transaction_date: date
    direction: Direction

    # Always positive, direction carries the sign
    amount: Decimal

    description: str = ""
    reference_number: Optional[str] = None
    cheque_number: Optional[str] = None
    company_id: Optional[str] = None
    value_date: Optional[date] = None

    reconciliation_status: ReconciliationStatus = ReconciliationStatus.UNRECONCILED
    reconciled_type: Optional[str] = None
    reconciled_id: Optional[str] = None
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[datetime] = None

    # Set at import when the bank itself marks the line as a reversal
    is_reversal_transaction: bool = False
    paired_transaction_id: Optional[str] = None
    pair_type: Optional[PairType] = None
    reversal_journal_ref: Optional[str] = None

    # Bumped on every state change, used for optimistic concurrency
    version: int = 0

    raw_data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if self.amount <= 0:
            raise ValidationError(
                f"Transaction {self.id}: amount must be positive, got {self.amount}"
            )
        self.direction = parse_direction(self.direction)

    @property
    def is_reconciled(self) -> bool:
        return self.reconciliation_status is ReconciliationStatus.RECONCILED

    @property
    def is_paired(self) -> bool:
        return self.paired_transaction_id is not None

    @property
    def narration(self) -> str:
        """Upper-cased description used for pattern heuristics."""
        return (self.description or "").upper()

    def reference_fields(self) -> list[str]:
        """Non-empty reference-like fields of this transaction."""
        return [
            value
            for value in (self.reference_number, self.cheque_number, self.description)
            if value
        ]
