# test/rentals/test_stats.py - Prognosis vs actual totals

from datetime import date, datetime, timezone

import pytest

from plugins.rentals.billing.invoice_math import compute_invoice_from_contract
from plugins.rentals.billing.stats import build_monthly_stats, sum_invoices

GENERATED_AT = datetime(2024, 2, 10, tzinfo=timezone.utc)


class TestMonthlyStats:

    def test_prognosis_for_full_year_contract(self, make_contract):
        stats = build_monthly_stats([make_contract()], [], 2024, 2, GENERATED_AT)

        assert stats.contracts_count == 1
        assert stats.prognosis_month.eur == pytest.approx(1000)
        assert stats.prognosis_month.net_ron == pytest.approx(5000)
        assert stats.prognosis_month.ron == pytest.approx(5950)
        assert stats.prognosis_annual.eur == pytest.approx(12000)
        assert stats.actual_month.ron == 0

    def test_prognosis_stops_at_contract_end(self, make_contract):
        stats = build_monthly_stats([make_contract(endDate="2024-06-30")], [], 2024, 2, GENERATED_AT)
        assert stats.prognosis_annual.eur == pytest.approx(6000)

    def test_actual_from_issued_invoices(self, make_contract):
        contract = make_contract()
        invoices = [
            compute_invoice_from_contract(contract, date(2024, 1, 5), number="MS-2024-00001"),
            compute_invoice_from_contract(contract, date(2024, 2, 5), number="MS-2024-00002"),
            compute_invoice_from_contract(contract, date(2023, 12, 5), number="MS-2023-00009"),
        ]
        stats = build_monthly_stats([contract], invoices, 2024, 2, GENERATED_AT)

        assert stats.actual_month.ron == pytest.approx(5950)
        assert stats.actual_annual.ron == pytest.approx(11900)
        assert stats.actual_annual.eur == pytest.approx(2000)

    def test_wire_names(self, make_contract):
        doc = build_monthly_stats([make_contract()], [], 2024, 2, GENERATED_AT).model_dump(by_alias=True)

        assert set(doc["prognosisMonth"]) == {"RON", "EUR", "NetRON"}
        assert doc["contractsCount"] == 1

    def test_sum_invoices_empty(self):
        totals = sum_invoices([])
        assert (totals.ron, totals.eur, totals.net_ron) == (0, 0, 0)
