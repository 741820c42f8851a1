"""Shared fixtures and helpers for the reconciliation test suite."""

from datetime import date
from decimal import Decimal

import pytest

from statement_recon.adapters.memory import (
    InMemoryAllocationStore,
    InMemoryCandidateSource,
    InMemoryTransactionRepository,
    RecordingLedgerPoster,
)
from statement_recon.config import ReconConfig
from statement_recon.models.candidate import DebitRecordCandidate, PaymentCandidate
from statement_recon.models.transaction import BankTransaction, Direction
from statement_recon.service import ReconciliationService

ACCOUNT = "acc-hdfc-001"
COMPANY = "co-1"


def make_txn(**kwargs) -> BankTransaction:
    """Helper to create a BankTransaction with defaults."""
    defaults = {
        "id": "txn-1",
        "bank_account_id": ACCOUNT,
        "transaction_date": date(2024, 6, 1),
        "direction": Direction.CREDIT,
        "amount": Decimal("50000"),
        "description": "NEFT CR ACME LTD",
        "company_id": COMPANY,
    }
    defaults.update(kwargs)
    return BankTransaction(**defaults)


def make_payment(**kwargs) -> PaymentCandidate:
    """Helper to create a PaymentCandidate with defaults."""
    defaults = {
        "candidate_id": "pay-1",
        "amount": Decimal("50000"),
        "candidate_date": date(2024, 6, 1),
        "party_name": "Acme Ltd",
        "invoice_ref": "INV-1001",
    }
    defaults.update(kwargs)
    return PaymentCandidate(**defaults)


def make_debit_record(**kwargs) -> DebitRecordCandidate:
    """Helper to create a DebitRecordCandidate with defaults."""
    defaults = {
        "candidate_id": "vp-1",
        "amount": Decimal("25000"),
        "candidate_date": date(2024, 6, 1),
        "record_type": "vendor_payment",
        "payee_name": "Globex Supplies",
    }
    defaults.update(kwargs)
    return DebitRecordCandidate(**defaults)


@pytest.fixture
def config():
    return ReconConfig()


@pytest.fixture
def repository():
    return InMemoryTransactionRepository()


@pytest.fixture
def candidates():
    return InMemoryCandidateSource()


@pytest.fixture
def poster():
    return RecordingLedgerPoster()


@pytest.fixture
def allocation_store():
    return InMemoryAllocationStore()


@pytest.fixture
def service(repository, candidates, poster, allocation_store, config):
    return ReconciliationService(
        repository, candidates, poster, allocation_store=allocation_store, config=config
    )
