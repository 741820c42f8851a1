"""
Reconciliation candidates: read-only projections of internal records that
may correspond to a bank transaction.

All variants share the (amount, date) shape the ranking logic works on and
carry a ``source`` discriminant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from .transaction import Direction, parse_direction


class CandidateSource(Enum):
    """Discriminant of the candidate union."""

    PAYMENT = "payment"
    DEBIT_RECORD = "debit_record"
    JOURNAL_LINE = "journal_entry"
    REVERSAL_ORIGINAL = "reversal_original"


class DebitRecordType(Enum):
    """Kinds of outgoing records a debit can be reconciled to."""

    SALARY = "salary"
    CONTRACTOR = "contractor"
    VENDOR_PAYMENT = "vendor_payment"
    EXPENSE_CLAIM = "expense_claim"
    SUBSCRIPTION = "subscription"
    LOAN_PAYMENT = "loan_payment"
    ASSET_MAINTENANCE = "asset_maintenance"
    TAX_PAYMENT = "tax_payment"
    TRANSFER = "transfer"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class ScoreBand(Enum):
    """Display bands for the 0-100 match score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(kw_only=True)
class ReconciliationCandidate(ABC):
    """Common shape of every candidate variant."""

    candidate_id: str
    amount: Decimal
    candidate_date: Optional[date] = None
    reference_number: Optional[str] = None
    description: Optional[str] = None
    is_reconciled: bool = False

    source: ClassVar[CandidateSource]

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))

    @property
    @abstractmethod
    def direction(self) -> Direction:
        """Statement direction a matching bank transaction has."""

    @property
    def reconciled_type(self) -> str:
        """Value stored as ``reconciled_type`` when committed."""
        return self.source.value

    @property
    def display_name(self) -> str:
        return self.description or self.candidate_id

    def searchable_text(self) -> list[str]:
        """Fields the free-text search matches against."""
        return [v for v in (self.reference_number, self.description) if v]


@dataclass(kw_only=True)
class PaymentCandidate(ReconciliationCandidate):
    """Incoming customer payment."""

    party_name: Optional[str] = None
    invoice_ref: Optional[str] = None
    payment_method: Optional[str] = None

    source = CandidateSource.PAYMENT

    @property
    def direction(self) -> Direction:
        return Direction.CREDIT

    @property
    def display_name(self) -> str:
        return self.party_name or self.invoice_ref or self.candidate_id

    def searchable_text(self) -> list[str]:
        return [v for v in (self.party_name, self.invoice_ref) if v] + super().searchable_text()


@dataclass(kw_only=True)
class DebitRecordCandidate(ReconciliationCandidate):
    """Generic outgoing record (salary, vendor payment, tax, ...)."""

    record_type: DebitRecordType = DebitRecordType.OTHER
    payee_name: Optional[str] = None
    tds_amount: Optional[Decimal] = None
    tds_section: Optional[str] = None
    category: Optional[str] = None

    source = CandidateSource.DEBIT_RECORD

    def __post_init__(self) -> None:
        super().__post_init__()
        if not isinstance(self.record_type, DebitRecordType):
            self.record_type = DebitRecordType(str(self.record_type))
        if self.tds_amount is not None and not isinstance(self.tds_amount, Decimal):
            self.tds_amount = Decimal(str(self.tds_amount))

    @property
    def direction(self) -> Direction:
        return Direction.DEBIT

    @property
    def reconciled_type(self) -> str:
        return self.record_type.value

    @property
    def display_name(self) -> str:
        return self.payee_name or self.record_type.display_name

    def searchable_text(self) -> list[str]:
        return [v for v in (self.payee_name,) if v] + super().searchable_text()


@dataclass(kw_only=True)
class JournalLineCandidate(ReconciliationCandidate):
    """A journal entry line posted against the bank's ledger account."""

    journal_entry_id: str
    journal_number: Optional[str] = None
    line_direction: Direction = Direction.DEBIT
    account_name: Optional[str] = None

    source = CandidateSource.JOURNAL_LINE

    def __post_init__(self) -> None:
        super().__post_init__()
        self.line_direction = parse_direction(self.line_direction)

    @property
    def direction(self) -> Direction:
        # A debit to the bank ledger account is money in on the statement
        return Direction.CREDIT if self.line_direction is Direction.DEBIT else Direction.DEBIT

    @property
    def display_name(self) -> str:
        return self.journal_number or self.journal_entry_id

    def searchable_text(self) -> list[str]:
        parts = [v for v in (self.journal_number, self.account_name) if v]
        return parts + super().searchable_text()


@dataclass(kw_only=True)
class ReversalOriginalCandidate(ReconciliationCandidate):
    """A prior debit transaction that a reversal credit may undo."""

    transaction_id: str
    reconciled_type_of_original: Optional[str] = None
    reconciled_id_of_original: Optional[str] = None
    cheque_number: Optional[str] = None
    matched_reference: bool = False

    source = CandidateSource.REVERSAL_ORIGINAL

    @property
    def direction(self) -> Direction:
        return Direction.DEBIT

    @property
    def reconciled_type(self) -> str:
        return "reversal"


@dataclass
class ScoredCandidate:
    """A candidate with its match score against one bank transaction."""

    candidate: ReconciliationCandidate
    score: float
    amount_difference: Decimal  # bank amount - candidate amount
    date_difference_days: Optional[int]
    match_reason: str
    band: ScoreBand = field(default=ScoreBand.LOW)

    @property
    def is_exact_match(self) -> bool:
        return self.amount_difference == 0 and self.date_difference_days == 0
