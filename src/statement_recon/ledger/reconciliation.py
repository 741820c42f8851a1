"""
Reconciliation ledger: the authoritative reconciled/unreconciled state of
bank transactions.

State per transaction cycles unreconciled -> reconciled -> unreconciled.
Every transition runs under the transaction's lock; a commit either fully
lands (status, record, adjustment entry) or leaves the transaction as it
was.
"""

from copy import deepcopy
from datetime import datetime
from typing import Optional
import logging

from ..adapters.base import LedgerPoster, TransactionRepository
from ..models.records import DifferenceClassification, ReconciliationRecord
from ..models.transaction import BankTransaction, ReconciliationStatus
from ..utils.exceptions import (
    ConflictError,
    ReconciliationError,
    UpstreamError,
    ValidationError,
)
from ..utils.logging_config import log_audit_event
from .locks import TransactionLocks

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation state changes."""

    COMMITTED = "reconciliation.committed"
    UNRECONCILED = "reconciliation.unreconciled"
    REPLACED = "reconciliation.replaced"
    REVERTED = "reconciliation.reverted"


class ReconciliationLedger:
    """Commits and removes reconciliation records with at-most-once semantics."""

    def __init__(
        self,
        transactions: TransactionRepository,
        ledger_poster: LedgerPoster,
        locks: Optional[TransactionLocks] = None,
    ):
        self.transactions = transactions
        self.ledger_poster = ledger_poster
        self.locks = locks or TransactionLocks()
        self._records: dict[str, ReconciliationRecord] = {}

    def get_record(self, transaction_id: str) -> Optional[ReconciliationRecord]:
        return self._records.get(transaction_id)

    def records(self) -> list[ReconciliationRecord]:
        return list(self._records.values())

    def commit(
        self,
        transaction_id: str,
        reconciled_type: str,
        reconciled_id: str,
        reconciled_by: str,
        difference: Optional[DifferenceClassification] = None,
        expected_version: Optional[int] = None,
        replace: bool = False,
    ) -> ReconciliationRecord:
        """
        Reconcile a transaction to a record.

        Args:
            transaction_id: Bank transaction to reconcile
            reconciled_type: Candidate source discriminant or a manual type
            reconciled_id: Id of the matched record
            reconciled_by: Operator or automation identity
            difference: Confirmed classification when the gap is over threshold
            expected_version: Optimistic check against the version last read
            replace: Supersede an existing reconciliation once the new one is saved

        Raises:
            NotFoundError: Unknown transaction
            ValidationError: Missing type/id or malformed difference
            ConflictError: Already reconciled, paired, version mismatch or busy
            UpstreamError: The adjustment could not be posted
        """
        reconciled_type = (reconciled_type or "").strip()
        reconciled_id = (reconciled_id or "").strip()
        if not reconciled_type or not reconciled_id:
            raise ValidationError("reconciled_type and reconciled_id are required")

        with self.locks.hold(transaction_id):
            txn = self.transactions.get(transaction_id)

            if expected_version is not None and txn.version != expected_version:
                raise ConflictError(
                    f"Transaction {transaction_id} changed (version {txn.version}, "
                    f"expected {expected_version})"
                )
            if txn.is_paired:
                raise ConflictError(
                    f"Transaction {transaction_id} is paired with "
                    f"{txn.paired_transaction_id} as a reversal"
                )

            previous: Optional[ReconciliationRecord] = None
            if txn.is_reconciled:
                if not replace:
                    raise ConflictError(
                        f"Transaction {transaction_id} is already reconciled to "
                        f"{txn.reconciled_type} {txn.reconciled_id}; unreconcile it first"
                    )
                previous = self._records.get(transaction_id)
            snapshot = deepcopy(txn)

            adjustment_ref = None
            if difference is not None:
                adjustment_ref = self._call_poster(
                    "post_adjustment",
                    lambda: self.ledger_poster.post_adjustment(difference, transaction_id),
                )

            now = datetime.now()
            record = ReconciliationRecord(
                transaction_id=transaction_id,
                reconciled_type=reconciled_type,
                reconciled_id=reconciled_id,
                reconciled_by=reconciled_by,
                reconciled_at=now,
                difference=difference,
                adjustment_journal_ref=adjustment_ref,
            )

            txn.reconciliation_status = ReconciliationStatus.RECONCILED
            txn.reconciled_type = reconciled_type
            txn.reconciled_id = reconciled_id
            txn.reconciled_by = reconciled_by
            txn.reconciled_at = now
            txn.version += 1

            try:
                self.transactions.save(txn)
            except Exception as e:
                logger.error(f"Failed to persist reconciliation of {transaction_id}: {e}")
                if adjustment_ref is not None:
                    self._void_after_failure(adjustment_ref)
                if isinstance(e, ReconciliationError):
                    raise
                raise UpstreamError(f"Failed to persist reconciliation: {e}") from e

            # The replaced adjustment is voided only once the new state is saved
            if previous is not None and previous.adjustment_journal_ref is not None:
                old_ref = previous.adjustment_journal_ref
                try:
                    self._call_poster("void_entry", lambda: self.ledger_poster.void_entry(old_ref))
                except ReconciliationError:
                    self._put_back(snapshot, previous, txn.version)
                    if adjustment_ref is not None:
                        self._void_after_failure(adjustment_ref)
                    raise

            self._records[transaction_id] = record

        if snapshot.is_reconciled:
            log_audit_event(
                ReconciliationAuditEvent.REPLACED,
                transaction_id,
                {
                    "previous_type": snapshot.reconciled_type,
                    "previous_id": snapshot.reconciled_id,
                },
                actor=reconciled_by,
            )

        log_audit_event(
            ReconciliationAuditEvent.COMMITTED,
            transaction_id,
            {
                "reconciled_type": reconciled_type,
                "reconciled_id": reconciled_id,
                "difference_type": difference.difference_type.value if difference else None,
                "difference_amount": str(difference.difference_amount) if difference else None,
                "adjustment_journal_ref": adjustment_ref,
            },
            actor=reconciled_by,
        )
        return record

    def unreconcile(self, transaction_id: str) -> None:
        """
        Return a transaction to unreconciled.

        Safe to repeat: an unreconciled transaction is left untouched.
        """
        with self.locks.hold(transaction_id):
            txn = self.transactions.get(transaction_id)
            if not txn.is_reconciled:
                logger.debug(f"Transaction {transaction_id} already unreconciled")
                return
            self._unreconcile_locked(txn)

        log_audit_event(ReconciliationAuditEvent.UNRECONCILED, transaction_id, {})

    def revert(self, transaction_id: str, previous: Optional[ReconciliationRecord]) -> None:
        """
        Undo the latest commit of a transaction.

        With no ``previous`` record this is ``unreconcile``. Otherwise the
        earlier reconciliation is put back; its adjustment, voided when it was
        replaced, is posted again.
        """
        if previous is None:
            self.unreconcile(transaction_id)
            return

        with self.locks.hold(transaction_id):
            txn = self.transactions.get(transaction_id)
            current = self._records.get(transaction_id)
            if current is not None and current.adjustment_journal_ref is not None:
                ref = current.adjustment_journal_ref
                self._call_poster("void_entry", lambda: self.ledger_poster.void_entry(ref))

            adjustment_ref = None
            if previous.difference is not None:
                difference = previous.difference
                adjustment_ref = self._call_poster(
                    "post_adjustment",
                    lambda: self.ledger_poster.post_adjustment(difference, transaction_id),
                )

            txn.reconciliation_status = ReconciliationStatus.RECONCILED
            txn.reconciled_type = previous.reconciled_type
            txn.reconciled_id = previous.reconciled_id
            txn.reconciled_by = previous.reconciled_by
            txn.reconciled_at = previous.reconciled_at
            txn.version += 1
            self.transactions.save(txn)
            self._records[transaction_id] = ReconciliationRecord(
                transaction_id=transaction_id,
                reconciled_type=previous.reconciled_type,
                reconciled_id=previous.reconciled_id,
                reconciled_by=previous.reconciled_by,
                reconciled_at=previous.reconciled_at,
                difference=previous.difference,
                adjustment_journal_ref=adjustment_ref,
            )

        log_audit_event(
            ReconciliationAuditEvent.REVERTED,
            transaction_id,
            {"reconciled_type": previous.reconciled_type, "reconciled_id": previous.reconciled_id},
        )

    def _put_back(
        self,
        snapshot: BankTransaction,
        previous: Optional[ReconciliationRecord],
        version: int,
    ) -> None:
        """Re-save a transaction as it was before a failed replace."""
        snapshot.version = version + 1
        try:
            self.transactions.save(snapshot)
        except Exception as e:
            logger.error(f"Could not restore transaction {snapshot.id}: {e}")
            return
        if previous is not None:
            self._records[snapshot.id] = previous

    def _unreconcile_locked(self, txn: BankTransaction) -> BankTransaction:
        record = self._records.get(txn.id)
        if record is not None and record.adjustment_journal_ref is not None:
            ref = record.adjustment_journal_ref
            self._call_poster("void_entry", lambda: self.ledger_poster.void_entry(ref))

        txn.reconciliation_status = ReconciliationStatus.UNRECONCILED
        txn.reconciled_type = None
        txn.reconciled_id = None
        txn.reconciled_by = None
        txn.reconciled_at = None
        txn.version += 1
        self.transactions.save(txn)
        self._records.pop(txn.id, None)
        return txn

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
            # The original failure is re-raised by the caller
            logger.error(f"Could not void orphaned adjustment {journal_entry_ref}: {e}")
