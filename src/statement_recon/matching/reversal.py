"""
Reversal pairing for bank statement lines.

A reversal is a credit that undoes an earlier debit on the same account
(bounced payout, cheque return, NACH return, chargeback). Once paired, both
lines are excluded from reconciliation. When the original debit had already
been posted to the books, a correcting reversal journal is requested from the
ledger poster.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Optional
import logging
import re

from ..adapters.base import DateWindow, LedgerPoster, TransactionRepository
from ..config import ReconConfig
from ..ledger.locks import TransactionLocks
from ..models.candidate import ReversalOriginalCandidate, ScoredCandidate
from ..models.records import PairingResult, ReversalPair
from ..models.transaction import BankTransaction, Direction, PairType
from ..utils.exceptions import (
    ConflictError,
    ReconciliationError,
    UpstreamError,
    ValidationError,
)
from ..utils.logging_config import log_audit_event
from .scoring import MatchScorer, ranking_key

logger = logging.getLogger(__name__)

# Long numeric UTR/RRN first, then bank-prefixed references like "HDFC12345678"
NUMERIC_REFERENCE = re.compile(r"\b(\d{10,})\b")
PREFIXED_REFERENCE = re.compile(r"\b([A-Z]{2,4}\d{8,})\b", re.IGNORECASE)


class ReversalAuditEvent:
    """Audit event types for reversal pairing."""

    PAIRED = "reversal.paired"
    UNPAIRED = "reversal.unpaired"


def extract_original_reference(description: Optional[str]) -> Optional[str]:
    """
    Pull the original transaction's reference out of a reversal narration.

    "REV-UPI/Apple India P/403106523911/Pay" -> "403106523911"
    """
    if not description or not description.strip():
        return None
    match = NUMERIC_REFERENCE.search(description)
    if match:
        return match.group(1)
    match = PREFIXED_REFERENCE.search(description)
    if match:
        return match.group(1).upper()
    return None


class ReversalPatternSet:
    """Ordered regexes matched against the upper-cased narration."""

    def __init__(self, patterns: Iterable[str] = ()):
        self._patterns: list[tuple[str, re.Pattern]] = []
        self.extend(patterns)

    def extend(self, patterns: Iterable[str]) -> None:
        for pattern in patterns:
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                raise ValidationError(f"Invalid reversal pattern {pattern!r}: {e}") from e
            self._patterns.append((pattern, compiled))

    def match(self, narration: str) -> Optional[str]:
        """First pattern found in the narration, or None."""
        for pattern, compiled in self._patterns:
            if compiled.search(narration):
                return pattern
        return None

    def __len__(self) -> int:
        return len(self._patterns)


@dataclass
class ReversalDetection:
    """Whether a transaction looks like a reversal, and of what."""

    is_reversal: bool
    detected_pattern: Optional[str] = None
    confidence: int = 0
    extracted_original_reference: Optional[str] = None
    suggested_originals: list[ScoredCandidate] = field(default_factory=list)


class ReversalDetector:
    """Detects reversal credits and pairs them with their original debits."""

    def __init__(
        self,
        transactions: TransactionRepository,
        ledger_poster: LedgerPoster,
        config: Optional[ReconConfig] = None,
        locks: Optional[TransactionLocks] = None,
    ):
        """
        Initialize the detector.

        Args:
            transactions: Bank transaction store
            ledger_poster: Collaborator creating reversal journals
            config: Application configuration
            locks: Lock registry shared with the reconciliation ledger
        """
        self.transactions = transactions
        self.ledger_poster = ledger_poster
        self.config = config or ReconConfig()
        self.settings = self.config.reversal
        self.locks = locks or TransactionLocks(self.config.locks.timeout_seconds)
        self.patterns = ReversalPatternSet(self.settings.patterns)
        self.scorer = MatchScorer(self.config.scoring, self.config.suggestion)
        self._pairs: dict[str, ReversalPair] = {}

    def detect(self, transaction: BankTransaction) -> ReversalDetection:
        """
        Check a transaction against the reversal patterns.

        Only credits qualify. A line the bank itself flagged as a reversal at
        import counts even when no pattern matches.
        """
        if transaction.direction is not Direction.CREDIT:
            return ReversalDetection(is_reversal=False)

        pattern = self.patterns.match(transaction.narration)
        confidence = 0
        if pattern is not None:
            confidence = self.settings.pattern_confidence
        if transaction.is_reversal_transaction:
            confidence = max(confidence, self.settings.flagged_confidence)

        if not confidence:
            return ReversalDetection(is_reversal=False)

        reference = extract_original_reference(transaction.description)
        suggestions: list[ScoredCandidate] = []
        if not transaction.is_paired:
            suggestions = self.find_potential_originals(transaction)

        logger.debug(
            f"Transaction {transaction.id} detected as reversal "
            f"(pattern={pattern}, confidence={confidence})"
        )
        return ReversalDetection(
            is_reversal=True,
            detected_pattern=pattern,
            confidence=confidence,
            extracted_original_reference=reference,
            suggested_originals=suggestions,
        )

    def find_potential_originals(
        self,
        transaction: BankTransaction,
        max_days_back: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        """
        Rank earlier debits that the given credit may reverse.

        Args:
            transaction: The suspected reversal (a credit)
            max_days_back: Lookback window in days (default 90)
            max_results: Cap on returned originals (default 10)

        Returns:
            Unpaired debits on the same account within tolerance. Originals
            whose references match the reversal narration rank first.
        """
        days_back = max_days_back if max_days_back is not None else self.settings.max_days_back
        limit = max_results if max_results is not None else self.settings.max_results
        if days_back <= 0 or limit <= 0:
            raise ValidationError("max_days_back and max_results must be positive")

        window = DateWindow(
            start=transaction.transaction_date - timedelta(days=days_back),
            end=transaction.transaction_date,
        )
        tolerance = self.scorer.tolerance_for(transaction.amount)
        reference = extract_original_reference(transaction.description)
        hints = [h.upper() for h in (reference, transaction.reference_number) if h]

        scored: list[ScoredCandidate] = []
        for original in self.transactions.list_for_account(
            transaction.bank_account_id, Direction.DEBIT, window
        ):
            if original.id == transaction.id or original.is_paired:
                continue
            if abs(transaction.amount - original.amount) > tolerance:
                continue

            matched = any(
                hint in value.upper() for hint in hints for value in original.reference_fields()
            )
            candidate = ReversalOriginalCandidate(
                candidate_id=original.id,
                amount=original.amount,
                candidate_date=original.transaction_date,
                reference_number=original.reference_number,
                description=original.description,
                is_reconciled=original.is_reconciled,
                transaction_id=original.id,
                reconciled_type_of_original=original.reconciled_type,
                reconciled_id_of_original=original.reconciled_id,
                cheque_number=original.cheque_number,
                matched_reference=matched,
            )
            result = self.scorer.evaluate(transaction, candidate, tolerance)
            if matched:
                result.score = round(min(100.0, result.score + self.settings.reference_bonus), 2)
                result.band = self.scorer.band(result.score)
                result.match_reason = f"{result.match_reason}, reference match"
            scored.append(result)

        scored.sort(key=lambda s: (not s.candidate.matched_reference, ranking_key(s)))
        return scored[:limit]

    def pair(
        self,
        reversal_transaction_id: str,
        original_transaction_id: str,
        original_was_posted_to_ledger: bool,
        paired_by: str,
        notes: Optional[str] = None,
    ) -> PairingResult:
        """
        Pair a reversal credit with the debit it undoes.

        Raises:
            ValidationError: Same id twice, different accounts or wrong directions
            ConflictError: Either side already paired, or the reversal reconciled
            UpstreamError: The reversal journal could not be posted
        """
        if reversal_transaction_id == original_transaction_id:
            raise ValidationError("A transaction cannot reverse itself")

        with self.locks.hold(reversal_transaction_id, original_transaction_id):
            reversal = self.transactions.get(reversal_transaction_id)
            original = self.transactions.get(original_transaction_id)

            if reversal.bank_account_id != original.bank_account_id:
                raise ValidationError(
                    f"Transactions {reversal.id} and {original.id} belong to "
                    "different bank accounts"
                )
            if reversal.direction is not Direction.CREDIT:
                raise ValidationError(f"Reversal {reversal.id} must be a credit")
            if original.direction is not Direction.DEBIT:
                raise ValidationError(f"Original {original.id} must be a debit")
            for txn in (reversal, original):
                if txn.is_paired:
                    raise ConflictError(
                        f"Transaction {txn.id} is already paired with {txn.paired_transaction_id}"
                    )
            if reversal.is_reconciled:
                raise ConflictError(
                    f"Reversal {reversal.id} is reconciled to {reversal.reconciled_type} "
                    f"{reversal.reconciled_id}; unreconcile it first"
                )

            pair = ReversalPair(
                reversal_transaction_id=reversal.id,
                original_transaction_id=original.id,
                original_was_posted_to_ledger=original_was_posted_to_ledger,
                paired_by=paired_by,
                notes=(notes or "").strip() or None,
            )

            warnings: list[str] = []
            journal_ref: Optional[str] = None
            if original_was_posted_to_ledger:
                journal_ref = self._call_poster(
                    "post_reversal", lambda: self.ledger_poster.post_reversal(pair)
                )
                if original.is_reconciled:
                    warning = (
                        f"Original {original.id} was reconciled to {original.reconciled_type} "
                        f"{original.reconciled_id}; review that reconciliation against "
                        f"reversal journal {journal_ref}"
                    )
                    logger.warning(warning)
                    warnings.append(warning)
                message = f"Reversal paired; reversal journal {journal_ref} created"
            else:
                message = "Reversal paired; both transactions excluded from reconciliation"

            saved_original = deepcopy(original)
            reversal.paired_transaction_id = original.id
            reversal.pair_type = PairType.REVERSAL
            original.paired_transaction_id = reversal.id
            original.pair_type = PairType.ORIGINAL
            for txn in (reversal, original):
                txn.reversal_journal_ref = journal_ref
                txn.version += 1

            original_saved = False
            try:
                self.transactions.save(original)
                original_saved = True
                self.transactions.save(reversal)
            except Exception as e:
                logger.error(f"Failed to persist reversal pair {reversal.id}/{original.id}: {e}")
                if original_saved:
                    self._put_back(saved_original, original.version)
                if journal_ref is not None:
                    self._void_after_failure(journal_ref)
                if isinstance(e, ReconciliationError):
                    raise
                raise UpstreamError(f"Failed to persist reversal pair: {e}") from e

            self._pairs[reversal.id] = pair

        log_audit_event(
            ReversalAuditEvent.PAIRED,
            reversal_transaction_id,
            {
                "original_transaction_id": original_transaction_id,
                "original_was_posted_to_ledger": original_was_posted_to_ledger,
                "reversal_journal_ref": journal_ref,
                "warnings": warnings,
            },
            actor=paired_by,
        )
        return PairingResult(
            pair=pair, reversal_journal_ref=journal_ref, warnings=warnings, message=message
        )

    def unpair(self, transaction_id: str, actor: str = "system") -> Optional[ReversalPair]:
        """
        Undo a pairing from either side.

        Voids the reversal journal when one was posted. Returns the removed
        pair, or None when the transaction was not paired.
        """
        partner_id = self.transactions.get(transaction_id).paired_transaction_id
        if partner_id is None:
            logger.debug(f"Transaction {transaction_id} is not paired")
            return None

        with self.locks.hold(transaction_id, partner_id):
            txn = self.transactions.get(transaction_id)
            if txn.paired_transaction_id != partner_id:
                raise ConflictError(f"Pairing of {transaction_id} changed; re-read and retry")
            partner = self.transactions.get(partner_id)

            snapshots = [deepcopy(txn), deepcopy(partner)]
            journal_ref = txn.reversal_journal_ref
            saved: list[BankTransaction] = []
            try:
                for side in (txn, partner):
                    side.paired_transaction_id = None
                    side.pair_type = None
                    side.reversal_journal_ref = None
                    side.version += 1
                    self.transactions.save(side)
                    saved.append(side)
                if journal_ref is not None:
                    self._call_poster(
                        "void_entry", lambda: self.ledger_poster.void_entry(journal_ref)
                    )
            except Exception as e:
                logger.error(f"Failed to unpair {transaction_id}/{partner_id}: {e}")
                for snapshot, side in zip(snapshots, saved):
                    self._put_back(snapshot, side.version)
                if isinstance(e, ReconciliationError):
                    raise
                raise UpstreamError(f"Failed to persist unpairing: {e}") from e

            reversal_id = transaction_id if txn.direction is Direction.CREDIT else partner_id
            pair = self._pairs.pop(reversal_id, None)

        log_audit_event(
            ReversalAuditEvent.UNPAIRED, transaction_id, {"partner_id": partner_id}, actor=actor
        )
        return pair

    def unpaired_reversals(self, bank_account_id: Optional[str] = None) -> list[BankTransaction]:
        """Credits that look like reversals but are neither paired nor reconciled."""
        if bank_account_id is None:
            pool = [t for t in self.transactions.all() if t.direction is Direction.CREDIT]
        else:
            pool = self.transactions.list_for_account(bank_account_id, Direction.CREDIT)

        return sorted(
            (
                t
                for t in pool
                if not t.is_paired
                and not t.is_reconciled
                and (t.is_reversal_transaction or self.patterns.match(t.narration))
            ),
            key=lambda t: (t.transaction_date, t.id),
        )

    def get_pair(self, transaction_id: str) -> Optional[ReversalPair]:
        pair = self._pairs.get(transaction_id)
        if pair is not None:
            return pair
        for candidate in self._pairs.values():
            if candidate.involves(transaction_id):
                return candidate
        return None

    def pairs(self) -> list[ReversalPair]:
        return list(self._pairs.values())

    def _call_poster(self, operation: str, call):
        try:
            return call()
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"Ledger poster {operation} failed: {e}")
            raise UpstreamError(f"Ledger poster {operation} failed: {e}") from e

    def _void_after_failure(self, journal_entry_ref: str) -> None:
        try:
            self.ledger_poster.void_entry(journal_entry_ref)
        except Exception as e:
            logger.error(f"Could not void orphaned reversal journal {journal_entry_ref}: {e}")

    def _put_back(self, snapshot: BankTransaction, version: int) -> None:
        """Re-save one side of a pair that could not be persisted as a whole."""
        snapshot.version = version + 1
        try:
            self.transactions.save(snapshot)
        except Exception as e:
            logger.error(f"Could not restore transaction {snapshot.id}: {e}")
