"""
Reconciliation service: the programmatic surface consumed by the CLI and
other callers.

Wires the suggestion engine, difference classifier, reconciliation ledger,
reversal detector and allocation tracker around one transaction store and one
shared lock registry.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Union
import logging

from .adapters.base import (
    AllocationStore,
    CandidateSource,
    LedgerPoster,
    TransactionRepository,
)
from .adapters.memory import InMemoryAllocationStore
from .adjustments.classifier import DifferenceClassifier
from .config import ReconConfig
from .ledger.allocation import AllocationTracker
from .ledger.locks import TransactionLocks
from .ledger.reconciliation import ReconciliationLedger
from .matching.engine import SuggestionEngine
from .matching.reversal import ReversalDetection, ReversalDetector
from .models.candidate import ReconciliationCandidate, ScoredCandidate
from .models.records import (
    DifferenceClassification,
    DifferencePreset,
    DifferenceType,
    PairingResult,
    ReconciliationRecord,
    ReversalPair,
)
from .models.transaction import BankTransaction, Direction
from .reports.summary import ReconciliationSummary, build_summary
from .utils.exceptions import ConflictError, ReconciliationError
from .utils.logging_config import log_audit_event

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Facade over the reconciliation components."""

    def __init__(
        self,
        transactions: TransactionRepository,
        candidate_source: CandidateSource,
        ledger_poster: LedgerPoster,
        allocation_store: Optional[AllocationStore] = None,
        config: Optional[ReconConfig] = None,
    ):
        """
        Initialize the service.

        Args:
            transactions: Bank transaction store
            candidate_source: Provider of candidate pools
            ledger_poster: Collaborator creating adjustment and reversal journals
            allocation_store: Payment allocation persistence (in-memory by default)
            config: Application configuration
        """
        self.config = config or ReconConfig()
        self.transactions = transactions
        self.locks = TransactionLocks(self.config.locks.timeout_seconds)

        self.engine = SuggestionEngine(candidate_source, self.config)
        self.classifier = DifferenceClassifier(self.config)
        self.ledger = ReconciliationLedger(transactions, ledger_poster, self.locks)
        self.reversals = ReversalDetector(transactions, ledger_poster, self.config, self.locks)
        self.allocations = AllocationTracker(allocation_store or InMemoryAllocationStore())

    # Suggestions

    def get_suggestions(
        self,
        transaction_id: str,
        tolerance: Optional[Decimal] = None,
        max_results: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        transaction = self.transactions.get(transaction_id)
        return self.engine.suggest(transaction, tolerance=tolerance, max_results=max_results)

    def search_candidates(
        self,
        query_text: str,
        amount_hint: Optional[Decimal] = None,
        company_id: Optional[str] = None,
        direction: Optional[Direction] = None,
        max_results: Optional[int] = None,
    ) -> list[ReconciliationCandidate]:
        return self.engine.search(query_text, amount_hint, company_id, direction, max_results)

    # Differences

    def preview_difference(
        self, transaction_id: str, candidate_amount: Decimal
    ) -> Optional[DifferencePreset]:
        """Preview the adjustment a commit against ``candidate_amount`` would need."""
        transaction = self.transactions.get(transaction_id)
        return self.classifier.classify(
            transaction.amount, candidate_amount, transaction.direction
        )

    def confirm_difference(
        self,
        preset: DifferencePreset,
        difference_type: Union[DifferenceType, str, None] = None,
        notes: Optional[str] = None,
        tds_section: Optional[str] = None,
    ) -> DifferenceClassification:
        return self.classifier.confirm(
            preset, notes=notes, tds_section=tds_section, difference_type=difference_type
        )

    # Reconciliation

    def reconcile(
        self,
        transaction_id: str,
        reconciled_type: str,
        reconciled_id: str,
        reconciled_by: str,
        difference: Optional[DifferenceClassification] = None,
        allocations: Optional[Iterable[tuple[str, Decimal]]] = None,
        replace: bool = False,
        expected_version: Optional[int] = None,
    ) -> ReconciliationRecord:
        """
        Commit a reconciliation, optionally spreading the payment over bills.

        Args:
            transaction_id: Bank transaction to reconcile
            reconciled_type: Candidate source discriminant or manual type
            reconciled_id: Matched record id (the payment id for allocations)
            reconciled_by: Operator identity
            difference: Confirmed classification for an over-threshold gap
            allocations: (bill_id, amount) pairs for a multi-bill payment
            replace: Unreconcile an existing reconciliation first
            expected_version: Optimistic check against the version last read

        Returns:
            The committed record. When allocations fail the commit is undone,
            restoring any reconciliation it replaced, and the error re-raised.
        """
        previous = self.ledger.get_record(transaction_id) if replace else None
        record = self.ledger.commit(
            transaction_id,
            reconciled_type,
            reconciled_id,
            reconciled_by,
            difference=difference,
            expected_version=expected_version,
            replace=replace,
        )

        lines = list(allocations or [])
        if lines:
            try:
                self.allocations.allocate_bulk(reconciled_id, lines)
            except ReconciliationError:
                logger.warning(
                    f"Allocation failed for {transaction_id}; rolling back reconciliation"
                )
                self.ledger.revert(transaction_id, previous)
                raise
            log_audit_event(
                "allocation.applied",
                transaction_id,
                {"payment_id": reconciled_id, "bills": [bill_id for bill_id, _ in lines]},
                actor=reconciled_by,
            )

        return record

    def unreconcile(self, transaction_id: str) -> None:
        self.ledger.unreconcile(transaction_id)

    def auto_reconcile(
        self, bank_account_id: str, min_match_score: Optional[float] = None
    ) -> list[ReconciliationRecord]:
        """
        Commit confident, unambiguous suggestions for one account.

        A transaction is committed only when its top suggestion scores at
        least ``min_match_score``, no other suggestion ties it, the gap needs
        no classification and the candidate is not held by any reconciliation,
        earlier or from this run.
        Likely reversals are left for pairing.
        """
        settings = self.config.auto_reconcile
        threshold = min_match_score if min_match_score is not None else settings.min_match_score
        start_time = datetime.now()

        committed: list[ReconciliationRecord] = []
        # Candidates already held by a live reconciliation are never reused
        used: set[tuple[str, str]] = {
            (r.reconciled_type, r.reconciled_id) for r in self.ledger.records()
        }
        used.update(
            (t.reconciled_type, t.reconciled_id) for t in self.transactions.all() if t.is_reconciled
        )
        for txn in self.transactions.list_for_account(bank_account_id):
            if txn.is_reconciled or txn.is_paired:
                continue
            if self.reversals.detect(txn).is_reversal:
                logger.debug(f"Skipping likely reversal {txn.id}")
                continue

            ranked = [
                s
                for s in self.engine.suggest(txn)
                if (s.candidate.reconciled_type, s.candidate.candidate_id) not in used
            ]
            if not ranked or ranked[0].score < threshold:
                continue
            top = ranked[0]
            if len(ranked) > 1 and ranked[1].score == top.score:
                logger.info(f"Ambiguous top suggestions for {txn.id}; left for review")
                continue
            if self.classifier.requires_classification(top.amount_difference):
                continue

            try:
                record = self.ledger.commit(
                    txn.id,
                    top.candidate.reconciled_type,
                    top.candidate.candidate_id,
                    settings.reconciled_by,
                    expected_version=txn.version,
                )
            except ConflictError as e:
                logger.warning(f"Auto-reconcile skipped {txn.id}: {e}")
                continue

            used.add((top.candidate.reconciled_type, top.candidate.candidate_id))
            committed.append(record)

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Auto-reconciled {len(committed)} transaction(s) on {bank_account_id} "
            f"in {elapsed:.2f}s"
        )
        return committed

    # Reversals

    def detect_reversal(self, transaction_id: str) -> ReversalDetection:
        return self.reversals.detect(self.transactions.get(transaction_id))

    def find_potential_originals(
        self,
        transaction_id: str,
        max_days_back: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        return self.reversals.find_potential_originals(
            self.transactions.get(transaction_id), max_days_back, max_results
        )

    def pair_reversal(
        self,
        reversal_transaction_id: str,
        original_transaction_id: str,
        original_was_posted_to_ledger: bool,
        paired_by: str,
        notes: Optional[str] = None,
    ) -> PairingResult:
        return self.reversals.pair(
            reversal_transaction_id,
            original_transaction_id,
            original_was_posted_to_ledger,
            paired_by,
            notes,
        )

    def unpair_reversal(self, transaction_id: str, actor: str = "system") -> Optional[ReversalPair]:
        return self.reversals.unpair(transaction_id, actor=actor)

    def unpaired_reversals(self, bank_account_id: Optional[str] = None) -> list[BankTransaction]:
        return self.reversals.unpaired_reversals(bank_account_id)

    # Reporting

    def summarize(self, bank_account_id: Optional[str] = None) -> ReconciliationSummary:
        if bank_account_id is None:
            transactions = self.transactions.all()
        else:
            transactions = self.transactions.list_for_account(bank_account_id)
        return build_summary(transactions, self.ledger.records(), bank_account_id)

    def bulk_suggestions(
        self, bank_account_id: str, max_results: Optional[int] = None
    ) -> dict[str, list[ScoredCandidate]]:
        """Suggestions for every open transaction of an account, for reports."""
        results: dict[str, list[ScoredCandidate]] = {}
        for txn in self.transactions.list_for_account(bank_account_id):
            if txn.is_reconciled or txn.is_paired:
                continue
            results[txn.id] = self.engine.suggest(txn, max_results=max_results)
        return results
