"""
Contracts of the collaborators the engine consumes and drives.

The engine never persists business records itself: candidates come from a
``CandidateSource``, journal postings go through a ``LedgerPoster`` and
payment allocations through an ``AllocationStore``.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from ..models.candidate import ReconciliationCandidate
from ..models.records import Allocation, DifferenceClassification, ReversalPair
from ..models.transaction import BankTransaction, Direction


@dataclass(frozen=True)
class DateWindow:
    """Inclusive date range."""

    start: date
    end: date

    @classmethod
    def around(cls, center: date, days: int) -> "DateWindow":
        return cls(start=center - timedelta(days=days), end=center + timedelta(days=days))

    def contains(self, value: Optional[date]) -> bool:
        return value is not None and self.start <= value <= self.end


@dataclass(frozen=True)
class AmountRange:
    """Inclusive amount range."""

    minimum: Decimal
    maximum: Decimal

    def contains(self, amount: Decimal) -> bool:
        return self.minimum <= amount <= self.maximum


@runtime_checkable
class CandidateSource(Protocol):
    """Read-only pools of reconcilable records."""

    def list_candidates(
        self, company_id: Optional[str], direction: Direction, window: DateWindow
    ) -> list[ReconciliationCandidate]:
        ...

    def search_candidates(
        self,
        company_id: Optional[str],
        text: str,
        amount_range: Optional[AmountRange],
    ) -> list[ReconciliationCandidate]:
        ...


@runtime_checkable
class LedgerPoster(Protocol):
    """Creates (and voids) correcting journal entries."""

    def post_adjustment(
        self, classification: DifferenceClassification, bank_transaction_id: str
    ) -> str:
        ...

    def post_reversal(self, pair: ReversalPair) -> str:
        ...

    def void_entry(self, journal_entry_ref: str) -> None:
        ...


@runtime_checkable
class AllocationStore(Protocol):
    """Persists payment-to-bill allocations."""

    def allocate(
        self, payment_id: str, bill_id: str, amount: Decimal, allocation_date: date
    ) -> Allocation:
        ...

    def unallocate_all(self, payment_id: str) -> None:
        ...

    def for_payment(self, payment_id: str) -> list[Allocation]:
        ...

    def for_bill(self, bill_id: str) -> list[Allocation]:
        ...


@runtime_checkable
class TransactionRepository(Protocol):
    """Storage of bank transactions and their reconciliation state."""

    def get(self, transaction_id: str) -> BankTransaction:
        ...

    def save(self, transaction: BankTransaction) -> None:
        ...

    def all(self) -> list[BankTransaction]:
        ...

    def list_for_account(
        self,
        bank_account_id: str,
        direction: Optional[Direction] = None,
        window: Optional[DateWindow] = None,
    ) -> list[BankTransaction]:
        ...
