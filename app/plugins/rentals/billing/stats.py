from datetime import datetime
from typing import Dict, Iterable, List

from plugins.rentals.billing.due import due_invoices_for_month
from plugins.rentals.billing.invoice_math import compute_invoice_from_contract
from plugins.rentals.models.contract import Contract
from plugins.rentals.models.invoice import DueInvoice, Invoice
from plugins.rentals.models.stats import MoneyTotals, MonthlyStats


def sum_invoices(invoices: Iterable[Invoice]) -> MoneyTotals:
    totals = MoneyTotals()
    for inv in invoices:
        totals.add(inv.total_ron, inv.corrected_amount_eur, inv.net_ron)
    return totals


def price_due(contracts_by_id: Dict[str, Contract], due: Iterable[DueInvoice]) -> MoneyTotals:
    """Price scheduler output with each contract's correction, rate and VAT."""
    totals = MoneyTotals()
    for item in due:
        contract = contracts_by_id[item.contract_id]
        invoice = compute_invoice_from_contract(
            contract,
            item.issued_at,
            amount_eur_override=item.amount_eur,
            partner_id=item.partner_id,
            partner_name=item.partner,
        )
        totals.add(invoice.total_ron, invoice.corrected_amount_eur, invoice.net_ron)
    return totals


def build_monthly_stats(
    contracts: List[Contract],
    year_invoices: Iterable[Invoice],
    year: int,
    month: int,
    generated_at: datetime,
) -> MonthlyStats:
    """
    Prognosis sums what the scheduler expects (per month, then over the
    twelve months of ``year``); actual sums invoices already issued.
    """
    by_id = {c.id: c for c in contracts}
    stats = MonthlyStats(contracts_count=len(contracts), month=month, year=year, generated_at=generated_at)

    for m in range(1, 13):
        priced = price_due(by_id, due_invoices_for_month(contracts, year, m))
        stats.prognosis_annual.add(priced.ron, priced.eur, priced.net_ron)
        if m == month:
            stats.prognosis_month = priced

    issued = [inv for inv in year_invoices if inv.issued_at.year == year]
    stats.actual_annual = sum_invoices(issued)
    stats.actual_month = sum_invoices(inv for inv in issued if inv.issued_at.month == month)
    return stats
