"""
Suggestion engine for bank transaction reconciliation.
Ranks candidate records for one unreconciled bank transaction and offers a
free-text fallback search.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from ..adapters.base import AmountRange, CandidateSource, DateWindow
from ..config import ReconConfig, as_decimal
from ..models.candidate import ReconciliationCandidate, ScoredCandidate
from ..models.transaction import BankTransaction, Direction
from ..utils.exceptions import ReconciliationError, UpstreamError, ValidationError
from .scoring import MatchScorer, ranking_key

logger = logging.getLogger(__name__)


class SuggestionEngine:
    """
    Produces ranked reconciliation candidates for a bank transaction.

    Credits are matched against incoming-payment pools, debits against
    outgoing-record pools; journal lines may appear in either. The engine is
    read-only and never retries a failing candidate source.
    """

    def __init__(self, candidate_source: CandidateSource, config: Optional[ReconConfig] = None):
        """
        Initialize the suggestion engine.

        Args:
            candidate_source: Collaborator providing candidate pools
            config: Application configuration
        """
        self.candidate_source = candidate_source
        self.config = config or ReconConfig()
        self.settings = self.config.suggestion
        self.scorer = MatchScorer(self.config.scoring, self.settings)

    def default_tolerance(self, transaction: BankTransaction) -> Decimal:
        return self.scorer.tolerance_for(transaction.amount)

    def suggest(
        self,
        transaction: BankTransaction,
        tolerance: Optional[Decimal] = None,
        max_results: Optional[int] = None,
    ) -> list[ScoredCandidate]:
        """
        Rank candidates for an unreconciled transaction.

        Args:
            transaction: Bank transaction to match
            tolerance: Amount window; defaults to the clamped 1% band
            max_results: Cap on returned suggestions

        Returns:
            Candidates within tolerance, closest amount first, then closest
            date. Empty when nothing qualifies.

        Raises:
            ValidationError: Transaction not eligible or bad arguments
            UpstreamError: The candidate source failed
        """
        if transaction.is_reconciled:
            raise ValidationError(f"Transaction {transaction.id} is already reconciled")
        if transaction.is_paired:
            raise ValidationError(
                f"Transaction {transaction.id} is paired as a reversal and cannot be reconciled"
            )

        if tolerance is None:
            tolerance = self.default_tolerance(transaction)
        tolerance = as_decimal(tolerance)
        if tolerance <= 0:
            raise ValidationError(f"Tolerance must be positive, got {tolerance}")

        limit = max_results if max_results is not None else self.settings.default_max_results
        if limit <= 0:
            raise ValidationError(f"max_results must be positive, got {limit}")

        start_time = datetime.now()
        window = DateWindow.around(transaction.transaction_date, self.settings.date_window_days)
        pool = self._list_pool(transaction, window)

        scored: list[ScoredCandidate] = []
        for candidate in pool:
            if candidate.direction is not transaction.direction or candidate.is_reconciled:
                continue
            if abs(transaction.amount - candidate.amount) > tolerance:
                continue
            scored.append(self.scorer.evaluate(transaction, candidate, tolerance))

        scored.sort(key=ranking_key)
        results = scored[:limit]

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.debug(
            f"Suggestions for {transaction.id}: {len(results)} of {len(pool)} candidates "
            f"within ₹{tolerance} in {elapsed:.3f}s"
        )
        return results

    def _list_pool(
        self, transaction: BankTransaction, window: DateWindow
    ) -> list[ReconciliationCandidate]:
        try:
            return list(
                self.candidate_source.list_candidates(
                    transaction.company_id, transaction.direction, window
                )
            )
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"Candidate source failed for {transaction.id}: {e}")
            raise UpstreamError(f"Candidate source failed: {e}") from e

    def search_amount_range(self, amount_hint: Decimal) -> AmountRange:
        hint = as_decimal(amount_hint)
        return AmountRange(
            minimum=hint * as_decimal(self.settings.search_amount_low_factor),
            maximum=hint * as_decimal(self.settings.search_amount_high_factor),
        )

    def search(
        self,
        query_text: str,
        amount_hint: Optional[Decimal],
        company_id: Optional[str],
        direction: Optional[Direction] = None,
        max_results: Optional[int] = None,
    ) -> list[ReconciliationCandidate]:
        """
        Free-text fallback search, unscored.

        When ``amount_hint`` is given the pool is first restricted to
        [0.8 x hint, 1.2 x hint], then filtered by case-insensitive substring
        over names, invoice/reference numbers and descriptions.
        """
        amount_range: Optional[AmountRange] = None
        if amount_hint is not None:
            if as_decimal(amount_hint) <= 0:
                raise ValidationError(f"Amount hint must be positive, got {amount_hint}")
            amount_range = self.search_amount_range(amount_hint)

        limit = max_results if max_results is not None else self.settings.search_max_results
        needle = (query_text or "").strip().lower()

        try:
            pool = list(self.candidate_source.search_candidates(company_id, needle, amount_range))
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"Candidate search failed for {query_text!r}: {e}")
            raise UpstreamError(f"Candidate search failed: {e}") from e

        results: list[ReconciliationCandidate] = []
        for candidate in pool:
            if amount_range is not None and not amount_range.contains(candidate.amount):
                continue
            if direction is not None and candidate.direction is not direction:
                continue
            if needle and not any(needle in text.lower() for text in candidate.searchable_text()):
                continue
            results.append(candidate)
            if len(results) >= limit:
                break

        logger.debug(f"Search {query_text!r}: {len(results)} candidates")
        return results
