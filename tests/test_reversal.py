from datetime import date
from decimal import Decimal

import pytest

from statement_recon.config import ReconConfig
from statement_recon.ledger.reconciliation import ReconciliationLedger
from statement_recon.matching.reversal import (
    ReversalDetector,
    ReversalPatternSet,
    extract_original_reference,
)
from statement_recon.models.transaction import Direction, PairType
from statement_recon.utils.exceptions import ConflictError, UpstreamError, ValidationError

from tests.conftest import ACCOUNT, make_txn


def original_debit(**kwargs):
    defaults = {
        "id": "debit-1",
        "transaction_date": date(2024, 6, 1),
        "direction": Direction.DEBIT,
        "amount": Decimal("25000"),
        "description": "NEFT DR GLOBEX SUPPLIES 403106523911",
        "reference_number": "403106523911",
    }
    defaults.update(kwargs)
    return make_txn(**defaults)


def reversal_credit(**kwargs):
    defaults = {
        "id": "credit-1",
        "transaction_date": date(2024, 6, 3),
        "direction": Direction.CREDIT,
        "amount": Decimal("25000"),
        "description": "REV-NEFT/GLOBEX SUPPLIES/403106523911",
    }
    defaults.update(kwargs)
    return make_txn(**defaults)


class SelectiveFailRepository:
    """Wraps a repository so that saving any of ``fail_ids`` raises."""

    def __init__(self, inner, fail_ids=()):
        self.inner = inner
        self.fail_ids = set(fail_ids)

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def save(self, transaction):
        if transaction.id in self.fail_ids:
            raise IOError("disk full")
        self.inner.save(transaction)


@pytest.fixture
def detector(repository, poster):
    repository.add(original_debit())
    repository.add(reversal_credit())
    return ReversalDetector(repository, poster)


class TestPatterns:
    """Tests for narration patterns and reference extraction."""

    @pytest.mark.parametrize(
        "narration",
        [
            "REV-UPI/APPLE INDIA P/403106523911/PAY",
            "REVERSAL OF NEFT 1234",
            "NEFT-REV 88123",
            "CHQ RET 000123 INSUFFICIENT FUNDS",
            "NACH RETURN LOAN EMI",
            "CHARGEBACK VISA 4411",
            "REFUND AMAZON ORDER",
            "NEFT RETURN 403106523911 ACCOUNT CLOSED",
            "RTGS-RETURN UTIB0000123",
            "UPI/403106523911/REVERSAL",
            "REV-IMPS/403106523911",
            "IMPS REV 403106523911",
            "INWARD RETURN CHQ 000771",
            "ECS RETURN LIC PREMIUM",
            "ECS BOUNCE 1234567890",
            "NACH BOUNCE HDFC LTD",
            "CHARGE BACK MASTERCARD 7781",
            "DISPUTE CREDIT TXN 55120",
            "AUTO DEBIT REV ELECTRICITY",
            "SI-REV 0091 RENT",
            "RFD/AMAZON/4411",
            "CREDIT REVERSAL NEFT 9981",
            "NEFT CR-REV 401122",
        ],
    )
    def test_default_patterns_match(self, narration):
        assert ReversalPatternSet(ReconConfig().reversal.patterns).match(narration) is not None

    @pytest.mark.parametrize("narration", ["NEFT CR ACME LTD", "SALARY JUNE", "PREVIOUS BAL"])
    def test_ordinary_narrations_do_not_match(self, narration):
        assert ReversalPatternSet(ReconConfig().reversal.patterns).match(narration) is None

    def test_extend_adds_patterns(self):
        patterns = ReversalPatternSet([])
        assert patterns.match("MANDATE FAIL 123") is None

        patterns.extend([r"MANDATE[-\s]FAIL"])

        assert patterns.match("MANDATE FAIL 123") == r"MANDATE[-\s]FAIL"

    def test_invalid_pattern_rejected(self):
        with pytest.raises(ValidationError):
            ReversalPatternSet(["(unclosed"])

    @pytest.mark.parametrize(
        "narration, expected",
        [
            ("REV-UPI/Apple India P/403106523911/Pay", "403106523911"),
            ("CHQ RET hdfc12345678 funds insufficient", "HDFC12345678"),
            ("REFUND ORDER 55", None),
            ("", None),
        ],
    )
    def test_extract_original_reference(self, narration, expected):
        assert extract_original_reference(narration) == expected


class TestDetect:
    """Tests for ReversalDetector.detect."""

    def test_reversal_credit_detected_with_originals(self, detector, repository):
        detection = detector.detect(repository.get("credit-1"))

        assert detection.is_reversal
        assert detection.confidence == 75
        assert detection.extracted_original_reference == "403106523911"
        assert [s.candidate.transaction_id for s in detection.suggested_originals] == ["debit-1"]

    def test_debits_never_qualify(self, detector):
        debit = original_debit(id="debit-x", description="REV-NEFT 1234")
        assert not detector.detect(debit).is_reversal

    def test_bank_flag_qualifies_without_pattern(self, detector):
        flagged = reversal_credit(description="NEFT CR RETURNED", is_reversal_transaction=True)

        detection = detector.detect(flagged)

        assert detection.is_reversal
        assert detection.detected_pattern is None
        assert detection.confidence == 90

    def test_bounce_narration_detected(self, detector):
        bounce = reversal_credit(id="credit-2", description="ECS BOUNCE 1234567890")

        detection = detector.detect(bounce)

        assert detection.is_reversal
        assert detection.detected_pattern == r"ECS[-\s]BOUNCE"
        assert detection.extracted_original_reference == "1234567890"

    def test_ordinary_credit_not_reversal(self, detector):
        assert not detector.detect(make_txn()).is_reversal


class TestFindPotentialOriginals:
    """Tests for ranking candidate originals of a reversal."""

    def test_reference_match_ranks_first_with_bonus(self, repository, poster):
        repository.add(
            original_debit(
                id="debit-near",
                reference_number=None,
                description="NEFT DR OTHER",
                transaction_date=date(2024, 6, 3),
            )
        )
        repository.add(original_debit(id="debit-ref", transaction_date=date(2024, 5, 20)))
        detector = ReversalDetector(repository, poster)

        ranked = detector.find_potential_originals(reversal_credit())

        assert [s.candidate.transaction_id for s in ranked] == ["debit-ref", "debit-near"]
        ref_match = ranked[0]
        assert ref_match.candidate.matched_reference
        # 70 for exact amount, 30 * (1 - 14/30) = 16 for the date, +10 bonus
        assert ref_match.score == 96.0
        assert "reference match" in ref_match.match_reason

    def test_bonus_capped_at_100(self, repository, poster):
        repository.add(original_debit(transaction_date=date(2024, 6, 3)))
        detector = ReversalDetector(repository, poster)

        ranked = detector.find_potential_originals(reversal_credit())

        assert ranked[0].score == 100.0

    def test_filters_window_direction_tolerance_and_pairing(self, repository, poster):
        repository.add(original_debit(id="too-old", transaction_date=date(2024, 2, 1)))
        repository.add(original_debit(id="after", transaction_date=date(2024, 6, 10)))
        repository.add(original_debit(id="too-far", amount=Decimal("26000")))
        repository.add(original_debit(id="paired", paired_transaction_id="credit-9"))
        repository.add(original_debit(id="other-acct", bank_account_id="acc-2"))
        repository.add(original_debit(id="ok"))
        detector = ReversalDetector(repository, poster)

        ranked = detector.find_potential_originals(reversal_credit())

        assert [s.candidate.transaction_id for s in ranked] == ["ok"]

    def test_custom_lookback_and_limit(self, repository, poster):
        for i in range(5):
            repository.add(original_debit(id=f"d-{i}", transaction_date=date(2024, 5, 25 + i)))
        detector = ReversalDetector(repository, poster)

        assert len(detector.find_potential_originals(reversal_credit(), max_results=2)) == 2
        recent = detector.find_potential_originals(reversal_credit(), max_days_back=7)
        assert {s.candidate.transaction_id for s in recent} == {"d-2", "d-3", "d-4"}


class TestPair:
    """Tests for ReversalDetector.pair."""

    def test_unposted_original_pairs_without_ledger_signal(self, detector, repository, poster):
        result = detector.pair("credit-1", "debit-1", False, "alice")

        reversal = repository.get("credit-1")
        original = repository.get("debit-1")
        assert reversal.paired_transaction_id == "debit-1"
        assert reversal.pair_type is PairType.REVERSAL
        assert original.paired_transaction_id == "credit-1"
        assert original.pair_type is PairType.ORIGINAL
        assert result.reversal_journal_ref is None
        assert not result.requires_ledger_correction
        assert poster.reversals == []
        assert detector.get_pair("debit-1") is result.pair

    def test_posted_original_requests_reversal_journal(self, detector, repository, poster):
        result = detector.pair("credit-1", "debit-1", True, "alice", notes="bounced payout")

        assert result.reversal_journal_ref == "JE-00001"
        assert result.requires_ledger_correction
        assert poster.reversals[0][1] is result.pair
        assert repository.get("debit-1").reversal_journal_ref == "JE-00001"
        assert result.warnings == []

    def test_posted_reconciled_original_is_flagged(self, repository, poster):
        repository.add(original_debit())
        repository.add(reversal_credit())
        ledger = ReconciliationLedger(repository, poster)
        detector = ReversalDetector(repository, poster, locks=ledger.locks)
        ledger.commit("debit-1", "vendor_payment", "vp-7", "alice")

        result = detector.pair("credit-1", "debit-1", True, "bob")

        assert len(result.warnings) == 1
        assert "vp-7" in result.warnings[0]
        assert repository.get("debit-1").is_reconciled

    def test_poster_failure_changes_nothing(self, detector, repository, poster):
        poster.fail_with = RuntimeError("ledger offline")

        with pytest.raises(UpstreamError):
            detector.pair("credit-1", "debit-1", True, "alice")

        assert not repository.get("credit-1").is_paired
        assert not repository.get("debit-1").is_paired
        assert detector.get_pair("credit-1") is None

    def test_second_save_failure_restores_original(self, repository, poster):
        repository.add(original_debit())
        repository.add(reversal_credit())
        flaky = SelectiveFailRepository(repository, {"credit-1"})
        detector = ReversalDetector(flaky, poster)

        with pytest.raises(UpstreamError):
            detector.pair("credit-1", "debit-1", True, "alice")

        original = repository.get("debit-1")
        assert original.paired_transaction_id is None
        assert original.pair_type is None
        assert original.reversal_journal_ref is None
        assert not repository.get("credit-1").is_paired
        assert poster.voided == ["JE-00001"]
        assert detector.get_pair("debit-1") is None

        flaky.fail_ids.clear()
        result = detector.pair("credit-1", "debit-1", False, "alice")
        assert result.pair.original_transaction_id == "debit-1"

    def test_same_transaction_rejected(self, detector):
        with pytest.raises(ValidationError):
            detector.pair("credit-1", "credit-1", False, "alice")

    def test_wrong_directions_rejected(self, detector):
        with pytest.raises(ValidationError):
            detector.pair("debit-1", "credit-1", False, "alice")

    def test_different_accounts_rejected(self, detector, repository):
        repository.add(original_debit(id="debit-2", bank_account_id="acc-2"))
        with pytest.raises(ValidationError):
            detector.pair("credit-1", "debit-2", False, "alice")

    def test_double_pairing_conflicts(self, detector, repository):
        repository.add(reversal_credit(id="credit-2"))
        detector.pair("credit-1", "debit-1", False, "alice")

        with pytest.raises(ConflictError):
            detector.pair("credit-2", "debit-1", False, "alice")

    def test_reconciled_reversal_conflicts(self, repository, poster):
        repository.add(original_debit())
        repository.add(reversal_credit())
        ledger = ReconciliationLedger(repository, poster)
        ledger.commit("credit-1", "payment", "pay-1", "alice")
        detector = ReversalDetector(repository, poster, locks=ledger.locks)

        with pytest.raises(ConflictError):
            detector.pair("credit-1", "debit-1", False, "alice")

    def test_paired_transactions_cannot_be_reconciled(self, detector, repository, poster):
        detector.pair("credit-1", "debit-1", False, "alice")
        ledger = ReconciliationLedger(repository, poster, detector.locks)

        with pytest.raises(ConflictError):
            ledger.commit("debit-1", "vendor_payment", "vp-1", "alice")


class TestUnpair:
    """Tests for undoing a pairing and listing open reversals."""

    def test_unpair_from_either_side_is_idempotent(self, detector, repository, poster):
        detector.pair("credit-1", "debit-1", True, "alice")

        removed = detector.unpair("debit-1")
        again = detector.unpair("debit-1")

        assert removed.reversal_transaction_id == "credit-1"
        assert again is None
        assert poster.voided == ["JE-00001"]
        for txn_id in ("credit-1", "debit-1"):
            txn = repository.get(txn_id)
            assert not txn.is_paired
            assert txn.pair_type is None
            assert txn.reversal_journal_ref is None

    def test_partner_save_failure_keeps_pair(self, repository, poster):
        repository.add(original_debit())
        repository.add(reversal_credit())
        flaky = SelectiveFailRepository(repository)
        detector = ReversalDetector(flaky, poster)
        detector.pair("credit-1", "debit-1", True, "alice")
        flaky.fail_ids.add("debit-1")

        with pytest.raises(UpstreamError):
            detector.unpair("credit-1")

        reversal = repository.get("credit-1")
        assert reversal.paired_transaction_id == "debit-1"
        assert reversal.pair_type is PairType.REVERSAL
        assert reversal.reversal_journal_ref == "JE-00001"
        assert repository.get("debit-1").paired_transaction_id == "credit-1"
        assert poster.voided == []
        assert detector.get_pair("credit-1") is not None

    def test_void_failure_keeps_pair(self, detector, repository, poster):
        detector.pair("credit-1", "debit-1", True, "alice")
        poster.fail_with = RuntimeError("ledger offline")

        with pytest.raises(UpstreamError):
            detector.unpair("debit-1")

        assert repository.get("credit-1").paired_transaction_id == "debit-1"
        assert repository.get("debit-1").paired_transaction_id == "credit-1"
        assert repository.get("debit-1").reversal_journal_ref == "JE-00001"

    def test_unpaired_reversals(self, detector, repository):
        repository.add(make_txn(id="plain-credit"))
        repository.add(reversal_credit(id="credit-2", description="CHQ RET 0042"))

        open_ids = [t.id for t in detector.unpaired_reversals(ACCOUNT)]
        assert open_ids == ["credit-1", "credit-2"]

        detector.pair("credit-1", "debit-1", False, "alice")
        assert [t.id for t in detector.unpaired_reversals()] == ["credit-2"]
