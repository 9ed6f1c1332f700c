from datetime import date
from typing import List, Optional, Tuple

from plugins.rentals.models.contract import Contract, RentType
from utils.date_helper import today_utc


def effective_end_date(contract: Contract) -> date:
    """End date after extensions: ``max(endDate, max(extendedUntil))``."""
    end = contract.end_date
    for ext in contract.contract_extensions:
        if ext.extended_until > end:
            end = ext.extended_until
    return end


def is_active_on(contract: Contract, day: date) -> bool:
    return contract.start_date <= day <= effective_end_date(contract)


def overlaps_period(contract: Contract, first: date, last: date) -> bool:
    return contract.start_date <= last and effective_end_date(contract) >= first


def rent_history(contract: Contract) -> List[Tuple[date, float]]:
    """
    Rent amendments as ``(effective date, amount)``, oldest first.

    The sort is stable, so amendments sharing an effective date keep their
    list order and the later one wins in ``rent_amount_at_date``.
    """
    rows = [
        (entry.effective_date, entry.new_rent_amount)
        for entry in contract.indexing_dates
        if entry.new_rent_amount is not None
    ]
    rows.sort(key=lambda row: row[0])
    return rows


def _amount_from_history(contract: Contract, on: date) -> Optional[float]:
    selected = None
    for effective, amount in rent_history(contract):
        if effective > on:
            break
        selected = amount
    if selected is not None:
        return selected
    return contract.amount_eur


def _amount_from_chosen_dates(contract: Contract, on: date) -> Optional[float]:
    latest = None
    for entry in sorted(contract.chosen_dates_invoices_dates, key=lambda e: e.date):
        if entry.date > on:
            break
        if entry.amount_eur is not None:
            latest = entry.amount_eur
    return latest


def rent_amount_at_date(contract: Contract, on: date) -> Optional[float]:
    """
    Base EUR rent applicable on ``on``, or ``None`` when nothing is known.

    - chosenDates: the chosen date itself, else the latest earlier chosen date
      carrying an amount, else the amendment history
    - yearly: an irregular entry falling exactly on (month, day) wins
    - otherwise the latest amendment effective on or before ``on``, falling
      back to the flat ``amountEUR``
    """
    if contract.rent_type == RentType.CHOSEN_DATES:
        chosen = _amount_from_chosen_dates(contract, on)
        if chosen is not None:
            return chosen
    elif contract.rent_type == RentType.YEARLY:
        for entry in contract.irregular_invoices:
            if entry.month == on.month and entry.day == on.day:
                return entry.amount_eur
    return _amount_from_history(contract, on)


def current_rent_amount(contract: Contract, as_of: Optional[date] = None) -> Optional[float]:
    """Rent shown on the contract card: the annual sum for yearly contracts."""
    if contract.rent_type == RentType.YEARLY:
        if not contract.irregular_invoices:
            return None
        return sum(entry.amount_eur for entry in contract.irregular_invoices)
    return rent_amount_at_date(contract, as_of or today_utc())
