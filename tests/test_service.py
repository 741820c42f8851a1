import logging
from datetime import date
from decimal import Decimal

import pytest

from statement_recon.models.candidate import ScoreBand
from statement_recon.models.records import DifferenceClassification, DifferenceType
from statement_recon.models.transaction import Direction
from statement_recon.utils.exceptions import ConflictError, ValidationError

from tests.conftest import COMPANY, make_debit_record, make_payment, make_txn


class TestReconcileFlow:
    """End-to-end flows through ReconciliationService."""

    def test_exact_match_needs_no_classification(self, service, repository, candidates):
        repository.add(make_txn())
        candidates.add(make_payment(), COMPANY)

        top = service.get_suggestions("txn-1")[0]
        assert top.band is ScoreBand.HIGH
        assert service.preview_difference("txn-1", top.candidate.amount) is None

        record = service.reconcile(
            "txn-1", top.candidate.reconciled_type, top.candidate.candidate_id, "alice"
        )
        assert record.difference is None
        assert repository.get("txn-1").is_reconciled

    def test_tds_short_payment(self, service, repository, candidates, poster):
        repository.add(make_txn(amount=Decimal("98000")))
        candidates.add(make_payment(amount=Decimal("100000")))

        # 2,000 short is outside the default 980 band
        top = service.get_suggestions("txn-1", tolerance=Decimal("5000"))[0]
        preset = service.preview_difference("txn-1", top.candidate.amount)
        assert preset.difference_amount == Decimal("-2000")
        assert preset.suggested_type is DifferenceType.TDS_DEDUCTED

        difference = service.confirm_difference(preset, tds_section="194J")
        record = service.reconcile("txn-1", "payment", "pay-1", "alice", difference=difference)

        assert record.difference.tds_section == "194J"
        assert poster.adjustments[0][1].difference_amount == Decimal("-2000")
        summary = service.summarize()
        assert summary.tds_by_section == {"194J": Decimal("2000")}
        assert summary.difference_totals == {"tds_deducted": Decimal("-2000")}

    def test_reconcile_emits_audit_event(self, service, repository, caplog):
        repository.add(make_txn())

        with caplog.at_level(logging.INFO, logger="statement_recon.audit"):
            service.reconcile("txn-1", "payment", "pay-1", "alice")

        events = [r.audit for r in caplog.records if hasattr(r, "audit")]
        assert events[-1]["event"] == "reconciliation.committed"
        assert events[-1]["actor"] == "alice"
        assert events[-1]["transaction_id"] == "txn-1"

    def test_reconcile_with_allocations(self, service, repository):
        repository.add(make_txn(amount=Decimal("100000")))
        service.allocations.register_payment("pay-1", Decimal("100000"))
        service.allocations.register_bill("inv-1", Decimal("60000"))
        service.allocations.register_bill("inv-2", Decimal("40000"))

        service.reconcile(
            "txn-1",
            "payment",
            "pay-1",
            "alice",
            allocations=[("inv-1", Decimal("60000")), ("inv-2", Decimal("40000"))],
        )

        assert service.allocations.payment_summary("pay-1").unallocated == 0

    def test_failed_allocation_rolls_back_commit(self, service, repository):
        repository.add(make_txn(amount=Decimal("100000")))
        service.allocations.register_payment("pay-1", Decimal("100000"))
        service.allocations.register_bill("inv-1", Decimal("60000"))

        with pytest.raises(ValidationError):
            service.reconcile(
                "txn-1", "payment", "pay-1", "alice", allocations=[("inv-1", Decimal("70000"))]
            )

        assert not repository.get("txn-1").is_reconciled
        assert service.ledger.get_record("txn-1") is None

    def test_failed_allocation_after_replace_restores_previous(self, service, repository, poster):
        repository.add(make_txn(amount=Decimal("100000")))
        tds = DifferenceClassification(
            difference_amount=Decimal("-2000"),
            difference_type=DifferenceType.TDS_DEDUCTED,
            tds_section="194J",
        )
        service.reconcile("txn-1", "payment", "pay-1", "alice", difference=tds)
        service.allocations.register_payment("pay-2", Decimal("100000"))
        service.allocations.register_bill("inv-1", Decimal("60000"))

        with pytest.raises(ValidationError):
            service.reconcile(
                "txn-1",
                "payment",
                "pay-2",
                "bob",
                allocations=[("inv-1", Decimal("70000"))],
                replace=True,
            )

        txn = repository.get("txn-1")
        assert txn.reconciled_id == "pay-1"
        assert txn.reconciled_by == "alice"
        record = service.ledger.get_record("txn-1")
        assert record.difference.tds_section == "194J"
        # The replaced adjustment was voided, so the restored one is posted again
        assert poster.voided == ["JE-00001"]
        assert record.adjustment_journal_ref == "JE-00002"

    def test_unreconcile_twice(self, service, repository):
        repository.add(make_txn())
        service.reconcile("txn-1", "payment", "pay-1", "alice")

        service.unreconcile("txn-1")
        service.unreconcile("txn-1")

        assert not repository.get("txn-1").is_reconciled


class TestReversalFlow:
    """Reversal pairing through the service, sharing locks with the ledger."""

    def test_pair_then_reconcile_conflicts(self, service, repository):
        repository.add(
            make_txn(id="d-1", direction=Direction.DEBIT, amount=Decimal("25000"),
                     description="NEFT DR GLOBEX")
        )
        repository.add(
            make_txn(id="c-1", amount=Decimal("25000"), transaction_date=date(2024, 6, 3),
                     description="REV-NEFT GLOBEX")
        )

        detection = service.detect_reversal("c-1")
        assert detection.is_reversal
        original = detection.suggested_originals[0].candidate.transaction_id
        assert service.find_potential_originals("c-1")[0].candidate.transaction_id == original

        service.pair_reversal("c-1", original, False, "alice")

        assert service.unpaired_reversals() == []
        with pytest.raises(ConflictError):
            service.reconcile("c-1", "payment", "pay-1", "alice")
        with pytest.raises(ValidationError):
            service.get_suggestions("d-1")

        service.unpair_reversal("c-1")
        assert [t.id for t in service.unpaired_reversals()] == ["c-1"]


class TestAutoReconcile:
    """Tests for auto_reconcile: only unique, confident, in-threshold matches."""

    def test_commits_confident_unique_matches(self, service, repository, candidates):
        repository.add(make_txn(id="exact"))
        repository.add(make_txn(id="short", amount=Decimal("70000")))
        repository.add(make_txn(id="debit", direction=Direction.DEBIT, amount=Decimal("25000")))
        candidates.add(make_payment(candidate_id="pay-exact"))
        candidates.add(make_payment(candidate_id="pay-short", amount=Decimal("69985")))
        candidates.add(make_debit_record(candidate_id="vp-1"))

        records = service.auto_reconcile("acc-hdfc-001")

        committed = {r.transaction_id: r.reconciled_id for r in records}
        # 15 short needs classification, so it is left for review
        assert committed == {"exact": "pay-exact", "debit": "vp-1"}
        assert all(r.reconciled_by == "auto" for r in records)
        assert repository.get("debit").reconciled_type == "vendor_payment"

    def test_ties_are_left_for_review(self, service, repository, candidates):
        repository.add(make_txn())
        candidates.add(make_payment(candidate_id="a"))
        candidates.add(make_payment(candidate_id="b"))

        assert service.auto_reconcile("acc-hdfc-001") == []

    def test_candidate_used_once_per_run(self, service, repository, candidates):
        repository.add(make_txn(id="t-1"))
        repository.add(make_txn(id="t-2"))
        candidates.add(make_payment(candidate_id="only"))

        records = service.auto_reconcile("acc-hdfc-001")

        assert len(records) == 1

    def test_candidate_held_by_earlier_reconciliation_not_reused(
        self, service, repository, candidates
    ):
        repository.add(make_txn(id="t-1"))
        repository.add(make_txn(id="t-2"))
        candidates.add(make_payment(candidate_id="only"))
        service.reconcile("t-1", "payment", "only", "alice")

        assert service.auto_reconcile("acc-hdfc-001") == []
        assert not repository.get("t-2").is_reconciled

    def test_second_run_does_not_reuse_candidates(self, service, repository, candidates):
        repository.add(make_txn(id="t-1"))
        candidates.add(make_payment(candidate_id="only"))
        assert len(service.auto_reconcile("acc-hdfc-001")) == 1

        repository.add(make_txn(id="t-2"))

        assert service.auto_reconcile("acc-hdfc-001") == []

    def test_below_min_score_skipped(self, service, repository, candidates):
        repository.add(make_txn())
        candidates.add(make_payment(candidate_date=date(2024, 6, 25)))

        # 70 for the amount + 30 * (1 - 24/30) = 76
        assert service.auto_reconcile("acc-hdfc-001") == []
        assert len(service.auto_reconcile("acc-hdfc-001", min_match_score=75)) == 1

    def test_reversals_are_not_auto_reconciled(self, service, repository, candidates):
        repository.add(make_txn(description="REV-NEFT 123"))
        candidates.add(make_payment())

        assert service.auto_reconcile("acc-hdfc-001") == []


class TestSummary:
    """Tests for the service summary."""

    def test_counts_and_percentage(self, service, repository):
        repository.add(make_txn(id="t-1"))
        repository.add(make_txn(id="t-2", direction=Direction.DEBIT, amount=Decimal("20000")))
        repository.add(make_txn(id="t-3", bank_account_id="acc-2"))
        service.reconcile("t-1", "payment", "pay-1", "alice")

        summary = service.summarize("acc-hdfc-001")

        assert summary.total_count == 2
        assert summary.reconciled_count == 1
        assert summary.unreconciled_count == 1
        assert summary.reconciliation_percentage == 50.0
        assert summary.net_change == Decimal("30000")
        assert summary.unreconciled_debits == Decimal("20000")
