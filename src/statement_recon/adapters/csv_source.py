"""
CSV snapshot loader.
Reads already-normalized exports of bank transactions and candidate records
into the in-memory adapters.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from ..config import ReconConfig
from ..models.candidate import (
    CandidateSource,
    DebitRecordCandidate,
    JournalLineCandidate,
    PaymentCandidate,
    ReconciliationCandidate,
)
from ..models.transaction import BankTransaction
from ..utils.exceptions import DataLoadError, ReconciliationError
from .memory import InMemoryCandidateSource, InMemoryTransactionRepository

logger = logging.getLogger(__name__)

TRUE_VALUES = {"true", "yes", "y", "1"}


class CsvSnapshotLoader:
    """
    Loads transaction and candidate snapshots from CSV files.

    Invalid rows are logged and skipped; an unreadable file raises
    ``DataLoadError``.
    """

    def __init__(self, config: ReconConfig):
        self.config = config

    def _read(self, file_path: Path) -> pd.DataFrame:
        input_config = self.config.input
        try:
            return pd.read_csv(
                file_path,
                encoding=input_config.encoding,
                delimiter=input_config.delimiter,
                dtype=str,
                keep_default_na=False,
            )
        except Exception as e:
            logger.error(f"Failed to read CSV file {file_path}: {e}")
            raise DataLoadError(f"Failed to read CSV file {file_path}: {e}") from e

    def load_transactions(self, file_path: Path) -> list[BankTransaction]:
        """
        Load bank transactions.

        Required columns: id, bank_account_id, transaction_date, direction,
        amount. Optional: company_id, description, reference_number,
        cheque_number, is_reversal_transaction.
        """
        logger.info(f"Loading bank transactions from: {file_path}")
        df = self._read(file_path)

        transactions: list[BankTransaction] = []
        for idx, row in df.iterrows():
            try:
                transactions.append(self._transaction_from_row(row.to_dict()))
            except (ReconciliationError, KeyError, ValueError, InvalidOperation) as e:
                logger.warning(f"Row {idx}: skipping bank transaction: {e}")

        logger.info(f"Loaded {len(transactions)} bank transactions")
        return transactions

    def load_repository(self, file_path: Path) -> InMemoryTransactionRepository:
        return InMemoryTransactionRepository(self.load_transactions(file_path))

    def load_candidates(self, file_path: Path) -> InMemoryCandidateSource:
        """
        Load candidate records.

        ``candidate_type`` selects the variant: payment, debit_record or
        journal_entry.
        """
        logger.info(f"Loading reconciliation candidates from: {file_path}")
        df = self._read(file_path)

        source = InMemoryCandidateSource()
        for idx, row in df.iterrows():
            values = row.to_dict()
            try:
                candidate = self._candidate_from_row(values)
            except (ReconciliationError, KeyError, ValueError, InvalidOperation) as e:
                logger.warning(f"Row {idx}: skipping candidate: {e}")
                continue
            source.add(candidate, _text(values.get("company_id")))

        logger.info(f"Loaded {len(source.candidates)} candidates")
        return source

    def _transaction_from_row(self, row: dict[str, Any]) -> BankTransaction:
        txn_date = self._parse_date(row["transaction_date"])
        if txn_date is None:
            raise ValueError("invalid transaction_date")

        return BankTransaction(
            id=str(row["id"]),
            bank_account_id=str(row["bank_account_id"]),
            transaction_date=txn_date,
            direction=row["direction"],
            amount=_parse_amount(row["amount"]),
            description=_text(row.get("description")) or "",
            reference_number=_text(row.get("reference_number")),
            cheque_number=_text(row.get("cheque_number")),
            company_id=_text(row.get("company_id")),
            is_reversal_transaction=_flag(row.get("is_reversal_transaction")),
            raw_data=row,
        )

    def _candidate_from_row(self, row: dict[str, Any]) -> ReconciliationCandidate:
        kind = CandidateSource((_text(row.get("candidate_type")) or "payment").lower())
        common = {
            "candidate_id": str(row["candidate_id"]),
            "amount": _parse_amount(row["amount"]),
            "candidate_date": self._parse_date(row.get("date")),
            "reference_number": _text(row.get("reference_number")),
            "description": _text(row.get("description")),
            "is_reconciled": _flag(row.get("is_reconciled")),
        }

        if kind is CandidateSource.PAYMENT:
            return PaymentCandidate(
                party_name=_text(row.get("party_name")),
                invoice_ref=_text(row.get("invoice_ref")),
                payment_method=_text(row.get("payment_method")),
                **common,
            )
        if kind is CandidateSource.DEBIT_RECORD:
            tds_amount = _text(row.get("tds_amount"))
            return DebitRecordCandidate(
                record_type=_text(row.get("record_type")) or "other",
                payee_name=_text(row.get("party_name")),
                tds_amount=_parse_amount(tds_amount) if tds_amount else None,
                tds_section=_text(row.get("tds_section")),
                category=_text(row.get("category")),
                **common,
            )
        if kind is CandidateSource.JOURNAL_LINE:
            return JournalLineCandidate(
                journal_entry_id=_text(row.get("journal_entry_id")) or common["candidate_id"],
                journal_number=_text(row.get("journal_number")),
                line_direction=_text(row.get("line_direction")) or "debit",
                account_name=_text(row.get("account_name")),
                **common,
            )
        raise ValueError(f"unsupported candidate_type {kind.value!r}")

    def _parse_date(self, date_value: Any) -> Optional[date]:
        """Parse a date with the configured format, falling back to pandas."""
        text = _text(date_value)
        if text is None:
            return None
        try:
            return datetime.strptime(text, self.config.input.date_format).date()
        except ValueError:
            try:
                return pd.to_datetime(text).date()
            except Exception:
                return None


def _text(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _flag(value: Any) -> bool:
    return (_text(value) or "").lower() in TRUE_VALUES


def _parse_amount(value: Any) -> Decimal:
    """Parse an amount, stripping currency symbols and thousands separators."""
    text = _text(value)
    if text is None:
        raise ValueError("missing amount")
    cleaned = text.replace("₹", "").replace("$", "").replace(",", "").strip()
    return Decimal(cleaned)
