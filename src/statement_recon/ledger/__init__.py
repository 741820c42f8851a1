"""Reconciliation state, transaction locks and payment allocations."""

from .allocation import AllocationTracker
from .locks import TransactionLocks
from .reconciliation import ReconciliationAuditEvent, ReconciliationLedger

__all__ = [
    "AllocationTracker",
    "ReconciliationAuditEvent",
    "ReconciliationLedger",
    "TransactionLocks",
]
