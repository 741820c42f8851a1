"""Collaborator contracts and their in-memory / CSV implementations."""

from .base import (
    AllocationStore,
    AmountRange,
    CandidateSource,
    DateWindow,
    LedgerPoster,
    TransactionRepository,
)
from .memory import (
    InMemoryAllocationStore,
    InMemoryCandidateSource,
    InMemoryTransactionRepository,
    RecordingLedgerPoster,
)
from .csv_source import CsvSnapshotLoader

__all__ = [
    "AllocationStore",
    "AmountRange",
    "CandidateSource",
    "DateWindow",
    "LedgerPoster",
    "TransactionRepository",
    "InMemoryAllocationStore",
    "InMemoryCandidateSource",
    "InMemoryTransactionRepository",
    "RecordingLedgerPoster",
    "CsvSnapshotLoader",
]
