from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from plugins.rentals.billing.rent import rent_amount_at_date
from plugins.rentals.models.contract import Contract
from plugins.rentals.models.invoice import Invoice


def format_money(value: float, places: int = 2) -> str:
    """Presentation rounding only; stored amounts keep full precision."""
    quantum = Decimal(1).scaleb(-places)
    return str(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def price_amount(amount_eur: float, correction_percent: float, exchange_rate_ron: float, tva_percent: float):
    """Returns (corrected EUR, net RON, VAT RON, total RON), unrounded."""
    corrected = amount_eur * (1 + correction_percent / 100)
    net = corrected * exchange_rate_ron
    vat = net * tva_percent / 100
    return corrected, net, vat, net + vat


def compute_invoice_from_contract(
    contract: Contract,
    issued_at: date,
    number: Optional[str] = None,
    amount_eur_override: Optional[float] = None,
    partner_id: Optional[str] = None,
    partner_name: Optional[str] = None,
    exchange_rate_override: Optional[float] = None,
    note: Optional[str] = None,
) -> Invoice:
    """
    Build an unsaved invoice for ``contract`` on ``issued_at``.

    Pure: no clock, no I/O. A missing rent amount becomes 0 here; the
    issuance flow refuses to persist such an invoice.
    """
    amount = amount_eur_override
    if amount is None:
        amount = rent_amount_at_date(contract, issued_at)
    if amount is None:
        amount = 0.0
    correction = contract.correction_percent or 0.0
    rate = exchange_rate_override if exchange_rate_override is not None else (contract.exchange_rate_ron or 0.0)
    tva = contract.tva_percent or 0
    corrected, net, vat, total = price_amount(amount, correction, rate, tva)

    return Invoice(
        id=number or f"{contract.id}-{issued_at.isoformat()}",
        contract_id=contract.id,
        contract_name=contract.name,
        owner_id=contract.owner_id,
        owner=contract.owner,
        partner_id=partner_id if partner_id is not None else (None if partner_name else contract.partner_id),
        partner=partner_name or contract.partner,
        issued_at=issued_at,
        due_days=contract.payment_due_days or 0,
        amount_eur=amount,
        correction_percent=correction,
        corrected_amount_eur=corrected,
        exchange_rate_ron=rate,
        net_ron=net,
        tva_percent=tva,
        vat_ron=vat,
        total_ron=total,
        number=number,
        note=note,
    )
