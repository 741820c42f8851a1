"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    ConflictError,
    UpstreamError,
    ConfigurationError,
    DataLoadError,
    ReportGenerationError,
)
from .logging_config import setup_logging, log_audit_event

__all__ = [
    "ReconciliationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "UpstreamError",
    "ConfigurationError",
    "DataLoadError",
    "ReportGenerationError",
    "setup_logging",
    "log_audit_event",
]
