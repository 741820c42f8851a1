"""Custom exceptions for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ValidationError(ReconciliationError):
    """Malformed input: unknown difference type, bad pairing, non-positive amount."""

    pass


class NotFoundError(ReconciliationError):
    """Unknown transaction, candidate, payment or bill id."""

    pass


class ConflictError(ReconciliationError):
    """Concurrent or repeated state change on the same transaction.

    Callers may re-read the current state and retry; the engine never does.
    """

    pass


class UpstreamError(ReconciliationError):
    """A collaborator (candidate source, ledger poster, store) failed."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class DataLoadError(ReconciliationError):
    """Error loading a CSV snapshot of transactions or candidates."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass
