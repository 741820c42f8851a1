"""Difference classification."""

from .classifier import (
    DIFFERENCE_TYPE_OPTIONS,
    DifferenceClassifier,
    parse_difference_type,
)

__all__ = ["DIFFERENCE_TYPE_OPTIONS", "DifferenceClassifier", "parse_difference_type"]
