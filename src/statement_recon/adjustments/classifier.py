"""
Difference adjudication between a bank amount and the matched record amount.

Two-phase: ``classify`` previews whether a difference must be accounted for
and proposes a default type; ``confirm`` turns the operator's choice into a
``DifferenceClassification`` for the commit.
"""

from decimal import Decimal
from typing import Optional, Union
import logging

from ..config import ReconConfig, as_decimal
from ..models.records import DifferenceClassification, DifferencePreset, DifferenceType
from ..models.transaction import Direction, parse_direction
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

DIFFERENCE_TYPE_OPTIONS: dict[DifferenceType, tuple[str, str]] = {
    DifferenceType.BANK_INTEREST: ("Bank Interest", "Interest income credited by bank"),
    DifferenceType.BANK_CHARGES: ("Bank Charges", "Fees/charges deducted by bank"),
    DifferenceType.TDS_DEDUCTED: ("TDS Deducted", "TDS deducted by customer"),
    DifferenceType.ROUND_OFF: ("Round Off", "Minor rounding difference"),
    DifferenceType.FOREX_GAIN: ("Forex Gain", "Foreign exchange gain"),
    DifferenceType.FOREX_LOSS: ("Forex Loss", "Foreign exchange loss"),
    DifferenceType.OTHER_INCOME: ("Other Income", "Miscellaneous income"),
    DifferenceType.OTHER_EXPENSE: ("Other Expense", "Miscellaneous expense"),
    DifferenceType.SUSPENSE: ("Investigate Later", "Park for investigation"),
}

# (direction, bank received/paid more) -> preselected type
DEFAULT_PRESETS: dict[tuple[Direction, bool], DifferenceType] = {
    (Direction.CREDIT, True): DifferenceType.BANK_INTEREST,
    (Direction.CREDIT, False): DifferenceType.TDS_DEDUCTED,
    (Direction.DEBIT, True): DifferenceType.BANK_CHARGES,
    (Direction.DEBIT, False): DifferenceType.ROUND_OFF,
}


def parse_difference_type(value: Union[DifferenceType, str]) -> DifferenceType:
    """Accept a DifferenceType or its string value; anything else is rejected."""
    if isinstance(value, DifferenceType):
        return value
    try:
        return DifferenceType(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(t.value for t in DifferenceType)
        raise ValidationError(
            f"Unknown difference type {value!r}; expected one of: {allowed}"
        ) from e


class DifferenceClassifier:
    """Decides whether a bank/record gap needs a formal adjustment."""

    def __init__(self, config: Optional[ReconConfig] = None):
        self.config = config or ReconConfig()
        self.threshold = as_decimal(self.config.difference.threshold)

    def requires_classification(self, difference: Decimal) -> bool:
        """True only when |difference| strictly exceeds the threshold."""
        return abs(as_decimal(difference)) > self.threshold

    def classify(
        self,
        transaction_amount: Decimal,
        candidate_amount: Decimal,
        direction: Union[Direction, str],
    ) -> Optional[DifferencePreset]:
        """
        Preview the difference for a chosen candidate.

        Returns:
            None when the commit needs no classification, otherwise a preset
            carrying the signed difference and a default type.
        """
        transaction_amount = as_decimal(transaction_amount)
        candidate_amount = as_decimal(candidate_amount)
        direction = parse_direction(direction)

        if transaction_amount <= 0 or candidate_amount <= 0:
            raise ValidationError(
                f"Amounts must be positive: bank={transaction_amount}, record={candidate_amount}"
            )

        difference = transaction_amount - candidate_amount
        if not self.requires_classification(difference):
            return None

        suggested = DEFAULT_PRESETS[(direction, difference > 0)]
        logger.debug(
            f"Difference {difference} on {direction.value} exceeds ₹{self.threshold}; "
            f"suggesting {suggested.value}"
        )
        return DifferencePreset(
            transaction_amount=transaction_amount,
            candidate_amount=candidate_amount,
            direction=direction,
            difference_amount=difference,
            suggested_type=suggested,
        )

    def confirm(
        self,
        preset: DifferencePreset,
        notes: Optional[str] = None,
        tds_section: Optional[str] = None,
        difference_type: Union[DifferenceType, str, None] = None,
    ) -> DifferenceClassification:
        """
        Confirm a preset into a classification.

        ``difference_type`` overrides the preselected default. A TDS section
        is kept only for ``tds_deducted`` and silently dropped otherwise.
        """
        chosen = (
            parse_difference_type(difference_type)
            if difference_type is not None
            else preset.suggested_type
        )

        section = (tds_section or "").strip() or None
        if chosen is not DifferenceType.TDS_DEDUCTED and section is not None:
            logger.debug(f"Ignoring TDS section {section!r} for {chosen.value}")
            section = None

        return DifferenceClassification(
            difference_amount=preset.difference_amount,
            difference_type=chosen,
            notes=(notes or "").strip() or None,
            tds_section=section,
        )
