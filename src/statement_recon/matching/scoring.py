"""
Tolerance policy and the 0-100 match score shared by suggestions and
reversal pairing.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from ..config import ScoringSettings, SuggestionSettings, as_decimal
from ..models.candidate import ReconciliationCandidate, ScoreBand, ScoredCandidate
from ..models.transaction import BankTransaction

TWO_PLACES = Decimal("0.01")


def compute_tolerance(
    amount: Decimal, settings: Optional[SuggestionSettings] = None
) -> Decimal:
    """
    Default amount window for a transaction.

    A percentage of the amount (1% by default) clamped to
    [tolerance_min, tolerance_max] (100 and 10,000 by default).
    """
    settings = settings or SuggestionSettings()
    raw = as_decimal(amount) * as_decimal(settings.tolerance_percent) / Decimal("100")
    lower = as_decimal(settings.tolerance_min)
    upper = as_decimal(settings.tolerance_max)
    return min(max(raw, lower), upper).quantize(TWO_PLACES)


def date_distance(first: date, second: Optional[date]) -> Optional[int]:
    """Absolute distance in days, None when the candidate has no date."""
    if second is None:
        return None
    return abs((first - second).days)


class MatchScorer:
    """
    Scores candidates on amount and date proximity.

    The score is ``amount_weight * (1 - min(|diff| / tolerance, 1))`` plus
    ``date_weight * max(0, 1 - days / date_horizon_days)``. It is 100 for an
    exact amount on the same day and never increases as either distance
    grows.
    """

    def __init__(
        self,
        scoring: Optional[ScoringSettings] = None,
        suggestion: Optional[SuggestionSettings] = None,
    ):
        self.scoring = scoring or ScoringSettings()
        self.suggestion = suggestion or SuggestionSettings()

    def tolerance_for(self, amount: Decimal) -> Decimal:
        return compute_tolerance(amount, self.suggestion)

    def score(
        self,
        amount_difference: Decimal,
        tolerance: Decimal,
        date_difference_days: Optional[int],
    ) -> float:
        """Deterministic 0-100 score; tolerance must be positive."""
        ratio = min(abs(as_decimal(amount_difference)) / as_decimal(tolerance), Decimal("1"))
        amount_component = self.scoring.amount_weight * float(Decimal("1") - ratio)

        if date_difference_days is None:
            date_component = 0.0
        else:
            horizon = self.scoring.date_horizon_days
            date_component = self.scoring.date_weight * max(
                0.0, 1.0 - date_difference_days / horizon
            )

        return round(min(100.0, amount_component + date_component), 2)

    def band(self, score: float) -> ScoreBand:
        if score >= self.scoring.high_band:
            return ScoreBand.HIGH
        if score >= self.scoring.medium_band:
            return ScoreBand.MEDIUM
        return ScoreBand.LOW

    def describe(
        self, amount_difference: Decimal, date_difference_days: Optional[int]
    ) -> str:
        """Human-readable reason for a score."""
        if amount_difference == 0:
            amount_part = "Exact amount"
        else:
            direction = "more" if amount_difference > 0 else "less"
            amount_part = f"Bank amount ₹{abs(amount_difference):,.2f} {direction} than record"

        if date_difference_days is None:
            date_part = "record has no date"
        elif date_difference_days == 0:
            date_part = "same day"
        else:
            date_part = f"{date_difference_days} day(s) apart"

        return f"{amount_part}, {date_part}"

    def evaluate(
        self,
        transaction: BankTransaction,
        candidate: ReconciliationCandidate,
        tolerance: Decimal,
    ) -> ScoredCandidate:
        """Score one candidate against a transaction."""
        amount_difference = transaction.amount - candidate.amount
        days = date_distance(transaction.transaction_date, candidate.candidate_date)
        score = self.score(amount_difference, tolerance, days)
        return ScoredCandidate(
            candidate=candidate,
            score=score,
            amount_difference=amount_difference,
            date_difference_days=days,
            match_reason=self.describe(amount_difference, days),
            band=self.band(score),
        )


def ranking_key(scored: ScoredCandidate) -> tuple:
    """Ascending |amount diff|, then date distance (undated last), then id."""
    days = scored.date_difference_days
    return (
        abs(scored.amount_difference),
        days is None,
        days if days is not None else 0,
        scored.candidate.candidate_id,
    )
