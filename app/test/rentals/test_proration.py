# test/rentals/test_proration.py - Next-month advance billing share

import pytest

from plugins.rentals.billing.proration import EXCLUDED, compute_next_month_proration


def _next_mode(make_contract, **overrides):
    return make_contract(invoiceMonthMode="next", **overrides)


class TestNextMonthProration:

    def test_full_next_month(self, make_contract):
        result = compute_next_month_proration(_next_mode(make_contract), 2024, 2)

        assert result.include
        assert result.fraction == 1.0
        assert result.days_in_month == 31

    def test_contract_ending_mid_next_month(self, make_contract):
        contract = _next_mode(make_contract, endDate="2024-03-15")
        result = compute_next_month_proration(contract, 2024, 2)

        assert result.include
        assert result.covered_days == 15
        assert result.fraction == pytest.approx(15 / 31)

    @pytest.mark.parametrize("end_date", ["2024-03-01", "2024-03-02"])
    def test_ending_on_first_two_days_is_excluded(self, make_contract, end_date):
        contract = _next_mode(make_contract, endDate=end_date)
        assert compute_next_month_proration(contract, 2024, 2) == EXCLUDED

    def test_ending_on_third_day_is_billed(self, make_contract):
        contract = _next_mode(make_contract, endDate="2024-03-03")
        result = compute_next_month_proration(contract, 2024, 2)

        assert result.include
        assert result.fraction == pytest.approx(3 / 31)

    def test_ended_before_next_month(self, make_contract):
        contract = _next_mode(make_contract, endDate="2024-02-28")
        assert not compute_next_month_proration(contract, 2024, 2).include

    def test_starting_inside_next_month(self, make_contract):
        contract = _next_mode(make_contract, startDate="2024-03-10")
        result = compute_next_month_proration(contract, 2024, 2)

        assert result.covered_days == 22
        assert result.fraction == pytest.approx(22 / 31)

    def test_starting_after_next_month(self, make_contract):
        contract = _next_mode(make_contract, startDate="2024-04-01")
        assert not compute_next_month_proration(contract, 2024, 2).include

    def test_december_rolls_into_january(self, make_contract):
        contract = _next_mode(make_contract, endDate="2025-01-10")
        result = compute_next_month_proration(contract, 2024, 12)

        assert result.include
        assert result.fraction == pytest.approx(10 / 31)

    def test_extension_counts_as_coverage(self, make_contract):
        contract = _next_mode(
            make_contract,
            endDate="2024-03-01",
            contractExtensions=[{"docDate": "2024-02-01", "extendedUntil": "2024-12-31"}],
        )
        assert compute_next_month_proration(contract, 2024, 2).fraction == 1.0

    def test_current_mode_is_excluded(self, make_contract):
        assert compute_next_month_proration(make_contract(), 2024, 2) == EXCLUDED

    def test_non_monthly_is_excluded(self, make_contract):
        contract = make_contract(
            rentType="yearly",
            invoiceMonthMode="next",
            irregularInvoices=[{"month": 3, "day": 1, "amountEUR": 100}],
        )
        assert compute_next_month_proration(contract, 2024, 2) == EXCLUDED
