from datetime import date
from decimal import Decimal

import pytest

from statement_recon.adapters.memory import InMemoryCandidateSource
from statement_recon.matching.engine import SuggestionEngine
from statement_recon.models.candidate import (
    JournalLineCandidate,
    ReconciliationCandidate,
    ScoreBand,
)
from statement_recon.models.transaction import Direction, ReconciliationStatus
from statement_recon.utils.exceptions import UpstreamError, ValidationError

from tests.conftest import COMPANY, make_debit_record, make_payment, make_txn


class ExplodingSource:
    """Candidate source whose backend is down."""

    def list_candidates(self, company_id, direction, window):
        raise ConnectionError("database unavailable")

    def search_candidates(self, company_id, text, amount_range):
        raise ConnectionError("database unavailable")


class TestSuggest:
    """Tests for SuggestionEngine.suggest: filtering, ranking and limits."""

    def test_exact_match_scenario(self, candidates):
        candidates.add(make_payment(), COMPANY)
        engine = SuggestionEngine(candidates)

        results = engine.suggest(make_txn())

        assert len(results) == 1
        top = results[0]
        assert top.band is ScoreBand.HIGH
        assert top.score == 100.0
        assert top.amount_difference == 0

    def test_only_same_direction_candidates(self, candidates):
        candidates.add(make_payment(candidate_id="pay-1"))
        candidates.add(make_debit_record(candidate_id="vp-1", amount=Decimal("50000")))
        engine = SuggestionEngine(candidates)

        credit_ids = [s.candidate.candidate_id for s in engine.suggest(make_txn())]
        debit_ids = [
            s.candidate.candidate_id
            for s in engine.suggest(make_txn(id="txn-2", direction=Direction.DEBIT))
        ]

        assert credit_ids == ["pay-1"]
        assert debit_ids == ["vp-1"]

    def test_journal_line_direction_follows_bank_ledger_side(self, candidates):
        candidates.add(
            JournalLineCandidate(
                candidate_id="jl-1",
                journal_entry_id="je-1",
                amount=Decimal("50000"),
                candidate_date=date(2024, 6, 1),
                line_direction="debit",
            )
        )
        engine = SuggestionEngine(candidates)

        results = engine.suggest(make_txn())

        assert [s.candidate.reconciled_type for s in results] == ["journal_entry"]

    def test_base_candidate_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            ReconciliationCandidate(candidate_id="x", amount=Decimal("1"))

    def test_excludes_out_of_tolerance_and_reconciled(self, candidates):
        candidates.add(make_payment(candidate_id="in", amount=Decimal("49600")))
        candidates.add(make_payment(candidate_id="out", amount=Decimal("49400")))
        candidates.add(make_payment(candidate_id="taken", is_reconciled=True))
        engine = SuggestionEngine(candidates)

        results = engine.suggest(make_txn())

        # Tolerance for 50,000 is 500
        assert [s.candidate.candidate_id for s in results] == ["in"]

    def test_excludes_candidates_outside_date_window(self, candidates):
        candidates.add(make_payment(candidate_id="old", candidate_date=date(2024, 4, 1)))
        candidates.add(make_payment(candidate_id="undated", candidate_date=None))
        engine = SuggestionEngine(candidates)

        results = engine.suggest(make_txn())

        assert [s.candidate.candidate_id for s in results] == ["undated"]

    def test_custom_tolerance_widens_window(self, candidates):
        candidates.add(make_payment(amount=Decimal("48000")))
        engine = SuggestionEngine(candidates)

        assert engine.suggest(make_txn()) == []
        assert len(engine.suggest(make_txn(), tolerance=Decimal("2500"))) == 1

    def test_max_results_truncates_after_sorting(self, candidates):
        for i in range(15):
            candidates.add(make_payment(candidate_id=f"p-{i:02d}", amount=Decimal(50000 - i * 10)))
        engine = SuggestionEngine(candidates)

        assert len(engine.suggest(make_txn())) == 10
        top3 = engine.suggest(make_txn(), max_results=3)
        assert [s.candidate.candidate_id for s in top3] == ["p-00", "p-01", "p-02"]

    def test_empty_pool_returns_empty_list(self):
        assert SuggestionEngine(InMemoryCandidateSource()).suggest(make_txn()) == []

    def test_reconciled_transaction_rejected(self, candidates):
        engine = SuggestionEngine(candidates)
        txn = make_txn(reconciliation_status=ReconciliationStatus.RECONCILED)

        with pytest.raises(ValidationError):
            engine.suggest(txn)

    def test_paired_transaction_rejected(self, candidates):
        engine = SuggestionEngine(candidates)

        with pytest.raises(ValidationError):
            engine.suggest(make_txn(paired_transaction_id="txn-9"))

    @pytest.mark.parametrize("tolerance", [Decimal("0"), Decimal("-1")])
    def test_non_positive_tolerance_rejected(self, candidates, tolerance):
        with pytest.raises(ValidationError):
            SuggestionEngine(candidates).suggest(make_txn(), tolerance=tolerance)

    def test_source_failure_is_distinguishable_from_no_match(self):
        engine = SuggestionEngine(ExplodingSource())

        with pytest.raises(UpstreamError) as exc_info:
            engine.suggest(make_txn())
        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestSearch:
    """Tests for SuggestionEngine.search: unscored free-text fallback."""

    def test_amount_hint_restricts_to_band(self, candidates):
        candidates.add(make_payment(candidate_id="a", amount=Decimal("800")))
        candidates.add(make_payment(candidate_id="b", amount=Decimal("1200")))
        candidates.add(make_payment(candidate_id="c", amount=Decimal("1201")))
        candidates.add(make_payment(candidate_id="d", amount=Decimal("799")))
        engine = SuggestionEngine(candidates)

        results = engine.search("", Decimal("1000"), None)

        assert [c.candidate_id for c in results] == ["a", "b"]

    def test_text_matches_names_and_references_case_insensitively(self, candidates):
        candidates.add(make_payment(candidate_id="a", party_name="Acme Ltd"))
        candidates.add(make_payment(candidate_id="b", party_name="Other", invoice_ref="INV-ACME"))
        candidates.add(make_payment(candidate_id="c", party_name="Initech"))
        engine = SuggestionEngine(candidates)

        assert [c.candidate_id for c in engine.search("acme", None, None)] == ["a", "b"]

    def test_direction_filter_and_cap(self, candidates):
        for i in range(30):
            candidates.add(make_payment(candidate_id=f"p-{i}"))
        candidates.add(make_debit_record())
        engine = SuggestionEngine(candidates)

        assert len(engine.search("", None, None)) == 20
        debits = engine.search("", None, None, direction=Direction.DEBIT)
        assert [c.candidate_id for c in debits] == ["vp-1"]

    def test_company_scoping(self, candidates):
        candidates.add(make_payment(candidate_id="mine"), COMPANY)
        candidates.add(make_payment(candidate_id="theirs"), "co-2")
        engine = SuggestionEngine(candidates)

        assert [c.candidate_id for c in engine.search("", None, COMPANY)] == ["mine"]

    def test_non_positive_hint_rejected(self, candidates):
        with pytest.raises(ValidationError):
            SuggestionEngine(candidates).search("x", Decimal("0"), None)
