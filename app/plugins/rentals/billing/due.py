"""
Due-invoice scheduler: which invoices a month is expected to produce.

For every contract active at some point in the month, one occurrence per
billing schedule entry, then split across partners when shares are set:

    monthly, current   issue day = min(monthlyInvoiceDay or start day, days in month),
                       valued on the issue day
    monthly, next      same issue day, valued on the 1st of next month and
                       scaled by the next-month proration fraction
    yearly             each irregular entry of this month, fixed amount
    chosenDates        each chosen date of this month, valued on that date

Occurrences whose amount cannot be resolved are skipped, never billed at 0.
"""
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from plugins.rentals.billing.proration import compute_next_month_proration
from plugins.rentals.billing.rent import is_active_on, overlaps_period, rent_amount_at_date
from plugins.rentals.models.contract import Contract, InvoiceMonthMode, RentType
from plugins.rentals.models.invoice import DueInvoice, Invoice, partner_key
from utils.date_helper import clamp_day, month_bounds, next_month

InvoiceKey = Tuple[str, str, str]


def invoice_key(contract_id: str, issued_at, partner_id: Optional[str], partner_name: Optional[str]) -> InvoiceKey:
    issued = issued_at.isoformat() if isinstance(issued_at, date) else str(issued_at)[:10]
    return contract_id, issued, partner_key(partner_id, partner_name)


def split_by_partners(contract: Contract, amount: float) -> List[Tuple[Optional[str], str, Optional[float], float]]:
    """(partner id, partner name, share percent, amount) per billed partner."""
    partners = contract.partners
    total_share = sum(p.share_percent or 0 for p in partners)
    if len(partners) > 1 and total_share > 0:
        return [
            (p.id, p.name, p.share_percent, amount * p.share_percent / 100)
            for p in partners
            if (p.share_percent or 0) > 0
        ]
    return [(contract.partner_id, contract.partner, None, amount)]


def _emit(contract: Contract, issued_at: date, amount: float, fraction: float = 1.0,
          period_start: Optional[date] = None) -> List[DueInvoice]:
    return [
        DueInvoice(
            contract_id=contract.id,
            contract_name=contract.name,
            issued_at=issued_at,
            amount_eur=share_amount,
            partner_id=pid,
            partner=name,
            share_percent=share,
            fraction=fraction,
            period_start=period_start,
        )
        for pid, name, share, share_amount in split_by_partners(contract, amount)
    ]


def _monthly(contract: Contract, year: int, month: int) -> List[DueInvoice]:
    dim = month_bounds(year, month)[2]
    base_day = contract.monthly_invoice_day or contract.start_date.day
    issued_at = date(year, month, min(max(base_day, 1), dim))

    if contract.invoice_month_mode == InvoiceMonthMode.NEXT:
        proration = compute_next_month_proration(contract, year, month)
        if not proration.include:
            return []
        ny, nm = next_month(year, month)
        period_start = date(ny, nm, 1)
        amount = rent_amount_at_date(contract, period_start)
        if amount is None:
            return []
        return _emit(contract, issued_at, amount * proration.fraction, proration.fraction, period_start)

    if not is_active_on(contract, issued_at):
        return []
    amount = rent_amount_at_date(contract, issued_at)
    if amount is None:
        return []
    return _emit(contract, issued_at, amount, period_start=date(year, month, 1))


def _yearly(contract: Contract, year: int, month: int) -> List[DueInvoice]:
    items: List[DueInvoice] = []
    for entry in contract.irregular_invoices:
        if entry.month != month:
            continue
        issued_at = clamp_day(year, month, entry.day)
        if not is_active_on(contract, issued_at) or entry.amount_eur <= 0:
            continue
        items.extend(_emit(contract, issued_at, entry.amount_eur))
    return items


def _chosen_dates(contract: Contract, year: int, month: int) -> List[DueInvoice]:
    items: List[DueInvoice] = []
    for entry in sorted(contract.chosen_dates_invoices_dates, key=lambda e: e.date):
        if (entry.date.year, entry.date.month) != (year, month) or not is_active_on(contract, entry.date):
            continue
        amount = rent_amount_at_date(contract, entry.date)
        if amount is None:
            continue
        items.extend(_emit(contract, entry.date, amount))
    return items


_SCHEDULES = {
    RentType.MONTHLY: _monthly,
    RentType.YEARLY: _yearly,
    RentType.CHOSEN_DATES: _chosen_dates,
}


def contract_occurrences(contract: Contract, year: int, month: int) -> List[DueInvoice]:
    first, last, _ = month_bounds(year, month)
    if not overlaps_period(contract, first, last):
        return []
    return _SCHEDULES[contract.rent_type](contract, year, month)


def mark_issued(items: List[DueInvoice], invoices: Iterable[Invoice]) -> List[DueInvoice]:
    issued: Dict[InvoiceKey, Invoice] = {
        invoice_key(inv.contract_id, inv.issued_at, inv.partner_id, inv.partner): inv for inv in invoices
    }
    for item in items:
        match = issued.get(item.key)
        item.already_issued = match is not None
        item.invoice_id = match.id if match else None
    return items


def due_invoices_for_month(
    contracts: Iterable[Contract],
    year: int,
    month: int,
    issued: Iterable[Invoice] = (),
) -> List[DueInvoice]:
    """All expected occurrences of (year, month), flagged against ``issued``."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12, got {month}")
    items: List[DueInvoice] = []
    for contract in contracts:
        items.extend(contract_occurrences(contract, year, month))
    items.sort(key=lambda d: (d.issued_at, d.contract_name, d.partner))
    return mark_issued(items, issued)
