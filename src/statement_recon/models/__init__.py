"""Data models for reconciliation."""

from .transaction import (
    BankTransaction,
    Direction,
    PairType,
    ReconciliationStatus,
    parse_direction,
)
from .candidate import (
    CandidateSource,
    DebitRecordCandidate,
    DebitRecordType,
    JournalLineCandidate,
    PaymentCandidate,
    ReconciliationCandidate,
    ReversalOriginalCandidate,
    ScoreBand,
    ScoredCandidate,
)
from .records import (
    Allocation,
    Bill,
    BillStatus,
    DifferenceClassification,
    DifferencePreset,
    DifferenceType,
    PairingResult,
    PaymentAllocationSummary,
    ReconciliationRecord,
    ReversalPair,
)

__all__ = [
    "BankTransaction",
    "Direction",
    "PairType",
    "ReconciliationStatus",
    "parse_direction",
    "CandidateSource",
    "DebitRecordCandidate",
    "DebitRecordType",
    "JournalLineCandidate",
    "PaymentCandidate",
    "ReconciliationCandidate",
    "ReversalOriginalCandidate",
    "ScoreBand",
    "ScoredCandidate",
    "Allocation",
    "Bill",
    "BillStatus",
    "DifferenceClassification",
    "DifferencePreset",
    "DifferenceType",
    "PairingResult",
    "PaymentAllocationSummary",
    "ReconciliationRecord",
    "ReversalPair",
]
