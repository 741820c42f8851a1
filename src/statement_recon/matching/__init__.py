"""Suggestion ranking, match scoring and reversal pairing."""

from .engine import SuggestionEngine
from .reversal import (
    ReversalDetection,
    ReversalDetector,
    ReversalPatternSet,
    extract_original_reference,
)
from .scoring import MatchScorer, compute_tolerance, ranking_key

__all__ = [
    "SuggestionEngine",
    "ReversalDetection",
    "ReversalDetector",
    "ReversalPatternSet",
    "extract_original_reference",
    "MatchScorer",
    "compute_tolerance",
    "ranking_key",
]
