"""Logging configuration for the reconciliation engine."""

from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional
import logging

ROOT_LOGGER_NAME = "statement_recon"

audit_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.audit")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure application logging.

    Args:
        level: Logging level (e.g., logging.DEBUG, logging.INFO)
        log_file: Optional path to log file
        log_format: Optional custom log format string

    Returns:
        Configured logger instance
    """
    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
            )
        )
        logger.addHandler(file_handler)

    return logger


def log_audit_event(
    event_type: str,
    transaction_id: str,
    details: dict[str, Any],
    actor: str = "system",
) -> None:
    """Log a state-changing reconciliation event for the audit trail."""
    entry = {
        "event": event_type,
        "transaction_id": transaction_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    audit_logger.info(f"Reconciliation event: {event_type}", extra={"audit": entry})
