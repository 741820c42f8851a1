"""In-memory collaborator implementations used by the CLI and the test suite."""

from copy import deepcopy
from datetime import date
from decimal import Decimal
from itertools import count
from threading import Lock
from typing import Iterable, Optional
import logging

from ..models.candidate import ReconciliationCandidate
from ..models.records import Allocation, DifferenceClassification, ReversalPair
from ..models.transaction import BankTransaction, Direction
from ..utils.exceptions import NotFoundError
from .base import AmountRange, DateWindow

logger = logging.getLogger(__name__)


class InMemoryTransactionRepository:
    """
    Dict-backed transaction store.

    ``get`` hands out copies, so callers only change stored state through
    ``save``, like a row fetched from a database.
    """

    def __init__(self, transactions: Iterable[BankTransaction] = ()):
        self._rows: dict[str, BankTransaction] = {}
        self._lock = Lock()
        for txn in transactions:
            self._rows[txn.id] = deepcopy(txn)

    def get(self, transaction_id: str) -> BankTransaction:
        with self._lock:
            txn = self._rows.get(transaction_id)
            if txn is None:
                raise NotFoundError(f"Bank transaction not found: {transaction_id}")
            return deepcopy(txn)

    def save(self, transaction: BankTransaction) -> None:
        with self._lock:
            self._rows[transaction.id] = deepcopy(transaction)

    def add(self, transaction: BankTransaction) -> None:
        self.save(transaction)

    def all(self) -> list[BankTransaction]:
        with self._lock:
            return [deepcopy(t) for t in self._rows.values()]

    def list_for_account(
        self,
        bank_account_id: str,
        direction: Optional[Direction] = None,
        window: Optional[DateWindow] = None,
    ) -> list[BankTransaction]:
        return [
            t
            for t in self.all()
            if t.bank_account_id == bank_account_id
            and (direction is None or t.direction is direction)
            and (window is None or window.contains(t.transaction_date))
        ]


class InMemoryCandidateSource:
    """Candidate pools held in a list, filtered like the repository queries would."""

    def __init__(
        self,
        candidates: Iterable[ReconciliationCandidate] = (),
        company_by_candidate: Optional[dict[str, str]] = None,
    ):
        self.candidates = list(candidates)
        self.company_by_candidate = company_by_candidate or {}

    def add(self, candidate: ReconciliationCandidate, company_id: Optional[str] = None) -> None:
        self.candidates.append(candidate)
        if company_id:
            self.company_by_candidate[candidate.candidate_id] = company_id

    def _in_company(self, candidate: ReconciliationCandidate, company_id: Optional[str]) -> bool:
        owner = self.company_by_candidate.get(candidate.candidate_id)
        return company_id is None or owner is None or owner == company_id

    def list_candidates(
        self, company_id: Optional[str], direction: Direction, window: DateWindow
    ) -> list[ReconciliationCandidate]:
        return [
            c
            for c in self.candidates
            if self._in_company(c, company_id)
            and c.direction is direction
            and (c.candidate_date is None or window.contains(c.candidate_date))
        ]

    def search_candidates(
        self,
        company_id: Optional[str],
        text: str,
        amount_range: Optional[AmountRange],
    ) -> list[ReconciliationCandidate]:
        needle = (text or "").strip().lower()
        results = []
        for c in self.candidates:
            if not self._in_company(c, company_id):
                continue
            if amount_range is not None and not amount_range.contains(c.amount):
                continue
            if needle and not any(needle in v.lower() for v in c.searchable_text()):
                continue
            results.append(c)
        return results


class RecordingLedgerPoster:
    """
    Ledger poster that records requested entries instead of posting them.

    Set ``fail_with`` to make the next calls raise, to exercise the
    all-or-nothing paths.
    """

    def __init__(self, prefix: str = "JE"):
        self.prefix = prefix
        self.adjustments: list[tuple[str, DifferenceClassification, str]] = []
        self.reversals: list[tuple[str, ReversalPair]] = []
        self.voided: list[str] = []
        self.fail_with: Optional[Exception] = None
        self._sequence = count(1)
        self._lock = Lock()

    def _next_ref(self) -> str:
        with self._lock:
            return f"{self.prefix}-{next(self._sequence):05d}"

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def post_adjustment(
        self, classification: DifferenceClassification, bank_transaction_id: str
    ) -> str:
        self._maybe_fail()
        ref = self._next_ref()
        self.adjustments.append((ref, classification, bank_transaction_id))
        logger.debug(
            f"Adjustment {ref}: {classification.difference_type.value} "
            f"{classification.difference_amount} for {bank_transaction_id}"
        )
        return ref

    def post_reversal(self, pair: ReversalPair) -> str:
        self._maybe_fail()
        ref = self._next_ref()
        self.reversals.append((ref, pair))
        logger.debug(
            f"Reversal entry {ref}: {pair.reversal_transaction_id} undoes "
            f"{pair.original_transaction_id}"
        )
        return ref

    def void_entry(self, journal_entry_ref: str) -> None:
        self._maybe_fail()
        self.voided.append(journal_entry_ref)


class InMemoryAllocationStore:
    """List-backed allocation store."""

    def __init__(self) -> None:
        self._allocations: list[Allocation] = []
        self._lock = Lock()

    def allocate(
        self, payment_id: str, bill_id: str, amount: Decimal, allocation_date: date
    ) -> Allocation:
        allocation = Allocation(
            payment_id=payment_id,
            bill_id=bill_id,
            allocated_amount=amount,
            allocation_date=allocation_date,
        )
        with self._lock:
            self._allocations.append(allocation)
        return allocation

    def unallocate_all(self, payment_id: str) -> None:
        with self._lock:
            self._allocations = [a for a in self._allocations if a.payment_id != payment_id]

    def for_payment(self, payment_id: str) -> list[Allocation]:
        with self._lock:
            return [a for a in self._allocations if a.payment_id == payment_id]

    def for_bill(self, bill_id: str) -> list[Allocation]:
        with self._lock:
            return [a for a in self._allocations if a.bill_id == bill_id]
