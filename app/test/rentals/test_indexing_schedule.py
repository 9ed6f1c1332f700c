# test/rentals/test_indexing_schedule.py - Indexing date generation and merging

from datetime import date

import pytest

from plugins.rentals.billing.indexing import (
    compute_future_indexing_dates,
    generate_indexing_dates_from_schedule,
    merge_indexing_dates,
    next_pending_indexing_date,
    refresh_indexing_dates,
)
from plugins.rentals.models.contract import IndexingDate


class TestGenerateSchedule:

    def test_yearly_with_leap_day_clamp(self):
        dates = generate_indexing_dates_from_schedule("2024-01-01", "2027-12-31", 29, 2)
        assert dates == ["2024-02-29", "2025-02-28", "2026-02-28", "2027-02-28"]

    def test_day_31_in_short_month(self):
        dates = generate_indexing_dates_from_schedule("2024-01-01", "2025-12-31", 31, 4)
        assert dates == ["2024-04-30", "2025-04-30"]

    def test_first_occurrence_after_start(self):
        dates = generate_indexing_dates_from_schedule("2024-05-01", "2026-12-31", 1, 3)
        assert dates == ["2025-03-01", "2026-03-01"]

    def test_occurrence_on_start_and_end_is_included(self):
        dates = generate_indexing_dates_from_schedule(date(2024, 3, 1), date(2025, 3, 1), 1, 3)
        assert dates == ["2024-03-01", "2025-03-01"]

    def test_every_six_months(self):
        dates = generate_indexing_dates_from_schedule("2024-01-01", "2025-06-30", 15, 3, every_months=6)
        assert dates == ["2024-03-15", "2024-09-15", "2025-03-15"]

    def test_anchor_month_before_start_month(self):
        dates = generate_indexing_dates_from_schedule("2024-10-01", "2025-12-31", 1, 3, every_months=6)
        assert dates == ["2025-03-01", "2025-09-01"]

    def test_existing_dates_are_merged_and_deduplicated(self):
        dates = generate_indexing_dates_from_schedule(
            "2024-01-01", "2025-12-31", 1, 3, existing=["2024-07-01", "2025-03-01", None]
        )
        assert dates == ["2024-03-01", "2024-07-01", "2025-03-01"]

    def test_empty_range_keeps_existing(self):
        assert generate_indexing_dates_from_schedule("2025-01-01", "2024-01-01", 1, 3) == []
        assert generate_indexing_dates_from_schedule(
            "2025-01-01", "2024-01-01", 1, 3, existing=["2024-06-01"]
        ) == ["2024-06-01"]

    @pytest.mark.parametrize("day,month,every", [(0, 3, 12), (32, 3, 12), (1, 13, 12), (1, 3, 0)])
    def test_invalid_schedule(self, day, month, every):
        with pytest.raises(ValueError):
            generate_indexing_dates_from_schedule("2024-01-01", "2025-01-01", day, month, every)


class TestContractSchedule:

    def test_runs_to_effective_end(self, make_contract):
        contract = make_contract(
            endDate="2025-12-31",
            indexingDay=1,
            indexingMonth=3,
            contractExtensions=[{"docDate": "2025-06-01", "extendedUntil": "2027-12-31"}],
        )
        dates = [entry.forecast_date for entry in compute_future_indexing_dates(contract)]
        assert dates == [date(2024, 3, 1), date(2025, 3, 1), date(2026, 3, 1), date(2027, 3, 1)]

    def test_anchored_at_start_date(self, make_contract):
        contract = make_contract(signedAt="2023-01-10", startDate="2024-06-01", indexingDay=1, indexingMonth=3)
        assert compute_future_indexing_dates(contract)[0].forecast_date == date(2025, 3, 1)

    def test_no_schedule(self, make_contract):
        assert compute_future_indexing_dates(make_contract()) == []

    def test_manual_entries_keep_metadata(self):
        computed = [IndexingDate(forecast_date="2025-03-01"), IndexingDate(forecast_date="2026-03-01")]
        provided = [
            IndexingDate(forecast_date="2025-03-01", done=True, new_rent_amount=1100, document="Act 3"),
            IndexingDate(forecast_date="2023-01-01", done=True),
        ]
        merged = merge_indexing_dates(computed, provided)

        assert [e.forecast_date for e in merged] == [date(2023, 1, 1), date(2025, 3, 1), date(2026, 3, 1)]
        assert merged[1].done and merged[1].new_rent_amount == 1100 and merged[1].document == "Act 3"
        assert not merged[2].done

    def test_refresh_keeps_out_of_schedule_entries(self, make_contract):
        contract = make_contract(
            indexingDay=1,
            indexingMonth=3,
            indexingDates=[{"forecastDate": "2024-07-15", "newRentAmount": 1050, "done": True}],
        )
        dates = [e.forecast_date.isoformat() for e in refresh_indexing_dates(contract)]
        assert dates == ["2024-03-01", "2024-07-15", "2025-03-01", "2026-03-01"]


class TestNextPending:

    def test_skips_done_and_past(self, make_contract):
        contract = make_contract(
            indexingDay=1,
            indexingMonth=3,
            indexingDates=[{"forecastDate": "2025-03-01", "done": True}],
        )

        assert next_pending_indexing_date(contract, date(2024, 2, 1)) == date(2024, 3, 1)
        assert next_pending_indexing_date(contract, date(2024, 3, 2)) == date(2026, 3, 1)

    def test_nothing_pending(self, make_contract):
        contract = make_contract(indexingDay=1, indexingMonth=3)
        assert next_pending_indexing_date(contract, date(2026, 3, 2)) is None
