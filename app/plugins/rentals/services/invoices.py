from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from core.cache import TTLCache
from core.events import INVOICE_DELETED, INVOICE_ISSUED, EventBus
from plugins.rentals.billing.due import due_invoices_for_month, invoice_key
from plugins.rentals.billing.invoice_math import compute_invoice_from_contract
from plugins.rentals.billing.rent import rent_amount_at_date
from plugins.rentals.billing.stats import build_monthly_stats
from plugins.rentals.models.contract import Contract
from plugins.rentals.models.invoice import DueInvoice, Invoice, IssueInvoiceRequest, partner_key
from plugins.rentals.models.stats import MonthlyStats
from plugins.rentals.services.contracts import ContractService
from plugins.rentals.services.numbering import InvoiceNumbering
from plugins.rentals.storage.store import INVOICES, DocumentStore
from utils.date_helper import month_range_iso, today_utc, utcnow, year_bounds
from utils.exceptions import (
    DuplicateInvoiceError,
    InvoiceValidationError,
    MissingRentAmountError,
    NotFoundError,
    UniqueConstraintError,
)

logger = structlog.get_logger(__name__)

PdfWriter = Callable[[Invoice], Awaitable[str]]


def _year_cache_key(year: int) -> str:
    return f"invoices:year:{year}"


class InvoiceService:
    """
    Invoice issuance and reads.

    Issuing is idempotent on (contract, partner, issue date): an application
    pre-check, then the unique key on the invoices collection for the race
    the pre-check cannot see. The per-year read cache is dropped after
    every write.
    """

    def __init__(
        self,
        store: DocumentStore,
        contracts: ContractService,
        numbering: InvoiceNumbering,
        cache: TTLCache,
        events: EventBus,
        pdf_writer: Optional[PdfWriter] = None,
        default_owner: Optional[str] = None,
    ):
        self.store = store
        self.contracts = contracts
        self.numbering = numbering
        self.cache = cache
        self.events = events
        self.pdf_writer = pdf_writer
        self.default_owner = default_owner

    # ---------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------

    async def fetch_invoices_for_year_fresh(self, year: int) -> List[Invoice]:
        start, end = year_bounds(year)
        docs = await self.store.find(INVOICES, {"issuedAt": {"$gte": start, "$lt": end}}, sort=[("issuedAt", 1)])
        await self.cache.set(_year_cache_key(year), docs)
        return [Invoice.model_validate(d) for d in docs]

    async def fetch_invoices_for_year(self, year: int) -> List[Invoice]:
        docs = await self.cache.get(_year_cache_key(year))
        if docs is None:
            return await self.fetch_invoices_for_year_fresh(year)
        return [Invoice.model_validate(d) for d in docs]

    async def invalidate_year(self, year: int) -> None:
        await self.cache.invalidate(_year_cache_key(year))

    async def list_invoices_for_month(self, year: int, month: int) -> List[Invoice]:
        start, end = month_range_iso(year, month)
        return [
            inv for inv in await self.fetch_invoices_for_year(year)
            if start <= inv.issued_at.isoformat() < end
        ]

    async def list_invoices_for_contract(self, contract_id: str) -> List[Invoice]:
        docs = await self.store.find(INVOICES, {"contractId": contract_id}, sort=[("issuedAt", -1)])
        return [Invoice.model_validate(d) for d in docs]

    async def get_invoice(self, invoice_id: str) -> Invoice:
        doc = await self.store.get(INVOICES, invoice_id)
        if not doc:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return Invoice.model_validate(doc)

    async def find_invoice_by_key(self, contract_id: str, partner: str, issued_at: date) -> Optional[Invoice]:
        doc = await self.store.find_one(
            INVOICES,
            {"contractId": contract_id, "partnerKey": partner, "issuedAt": issued_at.isoformat()},
        )
        return Invoice.model_validate(doc) if doc else None

    # ---------------------------------------------------------------
    # Scheduling
    # ---------------------------------------------------------------

    async def due_invoices(self, year: int, month: int) -> List[DueInvoice]:
        contracts = await self.contracts.list_contracts()
        issued = await self.list_invoices_for_month(year, month)
        return due_invoices_for_month(contracts, year, month, issued)

    async def monthly_stats(self, year: int, month: int, generated_at: Optional[datetime] = None) -> MonthlyStats:
        contracts = await self.contracts.list_contracts()
        # totals must reflect the last issue/delete, so bypass the cache
        invoices = await self.fetch_invoices_for_year_fresh(year)
        return build_monthly_stats(contracts, invoices, year, month, generated_at or utcnow())

    # ---------------------------------------------------------------
    # Issuance
    # ---------------------------------------------------------------

    def _resolve_partner(self, contract: Contract, request: IssueInvoiceRequest):
        """(partner id, partner name, share percent) billed by ``request``."""
        if not request.partner_id and not request.partner:
            if len(contract.partners) > 1 and sum(p.share_percent or 0 for p in contract.partners) > 0:
                raise InvoiceValidationError("partner is required for contracts split between partners", "partner")
            return contract.partner_id, contract.partner, None
        for p in contract.partners:
            if (request.partner_id and p.id == request.partner_id) or (request.partner and p.name == request.partner):
                share = p.share_percent if len(contract.partners) > 1 else None
                return p.id, p.name, share
        raise InvoiceValidationError(f"{request.partner or request.partner_id} is not a partner of {contract.id}", "partner")

    def _amount_for(self, contract: Contract, request: IssueInvoiceRequest, share: Optional[float]) -> Optional[float]:
        if request.amount_eur is not None:
            return request.amount_eur
        base = rent_amount_at_date(contract, request.issued_at)
        if base is None:
            return None
        return base * share / 100 if share else base

    async def issue_invoice(self, request: IssueInvoiceRequest, as_of: Optional[date] = None) -> Tuple[Invoice, bool]:
        """
        Issue one invoice. Returns ``(invoice, created)``; ``created`` is False
        when an invoice with the same key already existed.
        """
        contract = await self.contracts.get_contract(request.contract_id)
        pid, pname, share = self._resolve_partner(contract, request)
        key = partner_key(pid, pname)

        existing = await self.find_invoice_by_key(contract.id, key, request.issued_at)
        if existing:
            logger.info("invoice_already_issued", contract_id=contract.id, partner=key,
                        issued_at=request.issued_at.isoformat(), invoice_id=existing.id)
            return existing, False

        amount = self._amount_for(contract, request, share)
        if amount is None or amount <= 0:
            raise MissingRentAmountError(
                f"No rent amount for {contract.id} on {request.issued_at.isoformat()}", "amountEUR"
            )
        rate = request.exchange_rate_ron or contract.exchange_rate_ron
        if not rate or rate <= 0:
            raise InvoiceValidationError(f"Contract {contract.id} has no EUR/RON exchange rate", "exchangeRateRON")

        number = await self.numbering.allocate_invoice_number(
            contract.owner_id, contract.owner or self.default_owner, as_of=as_of or today_utc()
        )
        invoice = compute_invoice_from_contract(
            contract,
            request.issued_at,
            number=number,
            amount_eur_override=amount,
            partner_id=pid,
            partner_name=pname,
            exchange_rate_override=rate,
            note=request.note,
        )
        now = utcnow()
        invoice.created_at = now
        invoice.updated_at = now
        if invoice.owner is None:
            invoice.owner = self.default_owner

        try:
            await self.store.insert(INVOICES, invoice.to_document())
        except UniqueConstraintError as e:
            # lost the race to a concurrent issuance; number ``number`` stays unused
            winner = await self.find_invoice_by_key(contract.id, key, request.issued_at)
            if winner is None:
                raise DuplicateInvoiceError(invoice_key(contract.id, request.issued_at, pid, pname)) from e
            logger.info("invoice_issue_race_lost", contract_id=contract.id, unused_number=number,
                        invoice_id=winner.id)
            return winner, False

        await self.invalidate_year(request.issued_at.year)
        logger.info("invoice_issued", invoice_id=invoice.id, contract_id=contract.id, partner=key,
                    issued_at=request.issued_at.isoformat(), total_ron=invoice.total_ron)

        invoice = await self._attach_pdf(invoice)
        await self.events.publish(INVOICE_ISSUED, invoice.model_dump(mode="json", by_alias=True, exclude_none=True))
        return invoice, True

    async def issue_due_invoice(self, due: DueInvoice, note: Optional[str] = None,
                                as_of: Optional[date] = None) -> Tuple[Invoice, bool]:
        request = IssueInvoiceRequest(
            contract_id=due.contract_id,
            issued_at=due.issued_at,
            partner_id=due.partner_id,
            partner=due.partner,
            amount_eur=due.amount_eur,
            note=note,
        )
        return await self.issue_invoice(request, as_of=as_of)

    async def _attach_pdf(self, invoice: Invoice) -> Invoice:
        if self.pdf_writer is None:
            return invoice
        try:
            pdf_url = await self.pdf_writer(invoice)
        except Exception as e:
            # the invoice stands without its PDF; it can be rendered again on demand
            logger.error("invoice_pdf_failed", invoice_id=invoice.id, error=str(e))
            return invoice
        await self.store.update_fields(INVOICES, invoice.id, {"pdfUrl": pdf_url, "updatedAt": utcnow().isoformat()})
        invoice.pdf_url = pdf_url
        await self.invalidate_year(invoice.issued_at.year)
        return invoice

    async def delete_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.get_invoice(invoice_id)
        await self.store.delete(INVOICES, invoice_id)
        await self.invalidate_year(invoice.issued_at.year)
        logger.info("invoice_deleted", invoice_id=invoice_id, contract_id=invoice.contract_id)
        await self.events.publish(INVOICE_DELETED, {"id": invoice.id, "contractId": invoice.contract_id,
                                                    "issuedAt": invoice.issued_at.isoformat()})
        return invoice
