from datetime import date
from typing import Iterable, List, Optional

from plugins.rentals.billing.rent import effective_end_date
from plugins.rentals.models.contract import Contract, IndexingDate
from utils.date_helper import clamp_day, days_between, ensure_date

DEFAULT_EVERY_MONTHS = 12
MAX_STEPS = 1200
MAX_DATES = 600


def _occurrence(index: int, day: int) -> date:
    """``index`` counts months from year 0; the day is clamped per month."""
    return clamp_day(index // 12, index % 12 + 1, day)


def generate_indexing_dates_from_schedule(
    start_date,
    end_date,
    day: int,
    month: int,
    every_months: int = DEFAULT_EVERY_MONTHS,
    existing: Iterable = (),
) -> List[str]:
    """
    ISO dates on (day, month) stepped by ``every_months`` within
    [start_date, end_date], merged with the ``existing`` manual dates.

    Days past the month end are clamped (31 Feb -> 28/29 Feb) without
    drifting later occurrences. Result is sorted and de-duplicated.
    """
    start, end = ensure_date(start_date), ensure_date(end_date)
    if not 1 <= day <= 31:
        raise ValueError(f"day must be 1-31, got {day}")
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12, got {month}")
    if every_months < 1:
        raise ValueError(f"every_months must be >= 1, got {every_months}")

    found = set()
    if start and end and start <= end:
        index = start.year * 12 + (month - 1)
        steps = 0
        # back up to the earliest occurrence on or after start, then walk forward
        while _occurrence(index - every_months, day) >= start and steps < MAX_STEPS:
            index -= every_months
            steps += 1
        while _occurrence(index, day) < start and steps < MAX_STEPS:
            index += every_months
            steps += 1
        while steps < MAX_STEPS and len(found) < MAX_DATES:
            occurrence = _occurrence(index, day)
            if occurrence > end:
                break
            found.add(occurrence)
            index += every_months
            steps += 1

    for value in existing:
        d = ensure_date(value)
        if d:
            found.add(d)
    return [d.isoformat() for d in sorted(found)]


def merge_indexing_dates(computed: Iterable[IndexingDate], provided: Iterable[IndexingDate]) -> List[IndexingDate]:
    """
    Union keyed by forecastDate. Entries supplied by the user keep their
    metadata (actual date, document, new amount, done flag) and are never
    dropped, even when they fall outside the generated schedule.
    """
    merged = {entry.forecast_date: entry for entry in computed}
    for entry in provided:
        merged[entry.forecast_date] = entry
    return sorted(merged.values(), key=lambda e: e.forecast_date)


def compute_future_indexing_dates(contract: Contract) -> List[IndexingDate]:
    """Schedule entries for the contract's indexing day/month up to its effective end."""
    if not contract.has_indexing_schedule:
        return []
    dates = generate_indexing_dates_from_schedule(
        contract.start_date,
        effective_end_date(contract),
        contract.indexing_day,
        contract.indexing_month,
        contract.how_often_is_indexing or DEFAULT_EVERY_MONTHS,
    )
    return [IndexingDate(forecast_date=d) for d in dates]


def refresh_indexing_dates(contract: Contract) -> List[IndexingDate]:
    return merge_indexing_dates(compute_future_indexing_dates(contract), contract.indexing_dates)


def next_pending_indexing_date(contract: Contract, as_of: date) -> Optional[date]:
    """Earliest not-done indexing date on or after ``as_of``."""
    pending = [
        entry.forecast_date
        for entry in refresh_indexing_dates(contract)
        if not entry.done and entry.forecast_date >= as_of
    ]
    return min(pending) if pending else None


def days_until(target: date, as_of: date) -> int:
    return days_between(as_of, target)
