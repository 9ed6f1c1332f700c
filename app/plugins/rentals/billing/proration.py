from dataclasses import dataclass

from plugins.rentals.billing.rent import effective_end_date
from plugins.rentals.models.contract import Contract, InvoiceMonthMode, RentType
from utils.date_helper import month_bounds, next_month

# An occupancy ending on or before this day of the billed month is not invoiced.
LAST_SUPPRESSED_END_DAY = 2


@dataclass(frozen=True)
class Proration:
    include: bool
    fraction: float
    covered_days: int = 0
    days_in_month: int = 0


EXCLUDED = Proration(include=False, fraction=0.0)


def compute_next_month_proration(contract: Contract, year: int, month: int) -> Proration:
    """
    For advance billing evaluated in (year, month): should next month be
    invoiced, and which share of it does the contract cover.

    Day granularity only. A contract ending on day 1 or 2 of next month is
    excluded; otherwise ``fraction = covered_days / days_in_next_month``.
    """
    if contract.rent_type != RentType.MONTHLY or contract.invoice_month_mode != InvoiceMonthMode.NEXT:
        return EXCLUDED

    ny, nm = next_month(year, month)
    first, last, dim = month_bounds(ny, nm)
    start = contract.start_date
    end = effective_end_date(contract)
    if end < first or start > last:
        return EXCLUDED
    if end <= last and end.day <= LAST_SUPPRESSED_END_DAY:
        return EXCLUDED

    covered = (min(end, last) - max(start, first)).days + 1
    if covered >= dim:
        return Proration(include=True, fraction=1.0, covered_days=dim, days_in_month=dim)
    return Proration(include=True, fraction=covered / dim, covered_days=covered, days_in_month=dim)
