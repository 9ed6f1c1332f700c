# test/rentals/test_invoice_issuance.py - InvoiceService against the local store

import asyncio
from datetime import date
from unittest.mock import AsyncMock

import pytest

from core.events import INVOICE_DELETED, INVOICE_ISSUED
from plugins.rentals.models.invoice import IssueInvoiceRequest
from plugins.rentals.storage.store import INVOICES, MESSAGES
from utils.exceptions import InvoiceValidationError, MissingRentAmountError, NotFoundError

from .factories import SPLIT_PARTNERS, contract_doc

AS_OF = date(2024, 2, 5)


def _request(**overrides) -> IssueInvoiceRequest:
    data = {"contractId": "shop-a", "issuedAt": "2024-02-05"}
    data.update(overrides)
    return IssueInvoiceRequest.model_validate(data)


class TestIssueInvoice:

    @pytest.mark.asyncio
    async def test_issue_creates_numbered_invoice(self, services):
        await services.contracts.upsert_contract(contract_doc())

        invoice, created = await services.invoices.issue_invoice(_request(), as_of=AS_OF)

        assert created
        assert invoice.id == invoice.number == "MS-2024-00001"
        assert invoice.total_ron == pytest.approx(5950)
        assert invoice.owner == "Markov Services"
        stored = await services.store.get(INVOICES, invoice.id)
        assert stored["partnerKey"] == "p1"

    @pytest.mark.asyncio
    async def test_issue_is_idempotent(self, services):
        await services.contracts.upsert_contract(contract_doc())

        first, created_first = await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        second, created_second = await services.invoices.issue_invoice(_request(), as_of=AS_OF)

        assert created_first and not created_second
        assert second.id == first.id
        assert len(await services.store.find(INVOICES)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_issue_creates_one_invoice(self, services):
        await services.contracts.upsert_contract(contract_doc())

        results = await asyncio.gather(*[
            services.invoices.issue_invoice(_request(), as_of=AS_OF) for _ in range(5)
        ])

        assert sum(created for _, created in results) == 1
        assert len({invoice.id for invoice, _ in results}) == 1
        assert len(await services.store.find(INVOICES)) == 1

    @pytest.mark.asyncio
    async def test_split_contract_needs_partner(self, services):
        await services.contracts.upsert_contract(contract_doc(partners=SPLIT_PARTNERS))

        with pytest.raises(InvoiceValidationError) as exc:
            await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        assert exc.value.field == "partner"

        invoice, _ = await services.invoices.issue_invoice(_request(partner="Beta SRL"), as_of=AS_OF)
        assert invoice.partner_id == "p2"
        assert invoice.amount_eur == pytest.approx(400)

    @pytest.mark.asyncio
    async def test_partners_are_billed_separately(self, services):
        await services.contracts.upsert_contract(contract_doc(partners=SPLIT_PARTNERS))

        _, created_a = await services.invoices.issue_invoice(_request(partnerId="p1"), as_of=AS_OF)
        _, created_b = await services.invoices.issue_invoice(_request(partnerId="p2"), as_of=AS_OF)

        assert created_a and created_b
        assert len(await services.store.find(INVOICES)) == 2

    @pytest.mark.asyncio
    async def test_unknown_partner(self, services):
        await services.contracts.upsert_contract(contract_doc())

        with pytest.raises(InvoiceValidationError):
            await services.invoices.issue_invoice(_request(partner="Nobody"), as_of=AS_OF)

    @pytest.mark.asyncio
    async def test_missing_rent_amount(self, services):
        await services.contracts.upsert_contract(contract_doc(amountEUR=None))

        with pytest.raises(MissingRentAmountError):
            await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        assert await services.store.find(INVOICES) == []

    @pytest.mark.asyncio
    async def test_missing_exchange_rate(self, services):
        await services.contracts.upsert_contract(contract_doc(exchangeRateRON=None))

        with pytest.raises(InvoiceValidationError) as exc:
            await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        assert exc.value.field == "exchangeRateRON"

        invoice, _ = await services.invoices.issue_invoice(_request(exchangeRateRON="4,97"), as_of=AS_OF)
        assert invoice.exchange_rate_ron == 4.97

    @pytest.mark.asyncio
    async def test_unknown_contract(self, services):
        with pytest.raises(NotFoundError):
            await services.invoices.issue_invoice(_request(contractId="missing"), as_of=AS_OF)


class TestReadCache:

    @pytest.mark.asyncio
    async def test_month_listing_follows_issue_and_delete(self, services):
        await services.contracts.upsert_contract(contract_doc())
        assert await services.invoices.list_invoices_for_month(2024, 2) == []

        invoice, _ = await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        assert [i.id for i in await services.invoices.list_invoices_for_month(2024, 2)] == [invoice.id]
        assert await services.invoices.list_invoices_for_month(2024, 3) == []

        await services.invoices.delete_invoice(invoice.id)
        assert await services.invoices.list_invoices_for_month(2024, 2) == []

    @pytest.mark.asyncio
    async def test_due_invoices_flag_issued(self, services):
        await services.contracts.upsert_contract(contract_doc())
        invoice, _ = await services.invoices.issue_invoice(_request(), as_of=AS_OF)

        due = await services.invoices.due_invoices(2024, 2)

        assert len(due) == 1
        assert due[0].already_issued
        assert due[0].invoice_id == invoice.id

    @pytest.mark.asyncio
    async def test_due_flag_when_partner_listed_without_id(self, services):
        await services.contracts.upsert_contract(contract_doc(partners=[{"name": "Acme SRL"}]))
        invoice, _ = await services.invoices.issue_invoice(_request(partner="Acme SRL"), as_of=AS_OF)

        due = await services.invoices.due_invoices(2024, 2)

        assert invoice.partner_key == "p1"
        assert [(d.already_issued, d.invoice_id) for d in due] == [(True, invoice.id)]

    @pytest.mark.asyncio
    async def test_issue_due_invoice(self, services):
        await services.contracts.upsert_contract(contract_doc(partners=SPLIT_PARTNERS))

        for due in await services.invoices.due_invoices(2024, 2):
            await services.invoices.issue_due_invoice(due, as_of=AS_OF)

        invoices = await services.invoices.list_invoices_for_month(2024, 2)
        assert sorted(i.amount_eur for i in invoices) == [400, 600]
        assert all(d.already_issued for d in await services.invoices.due_invoices(2024, 2))

    @pytest.mark.asyncio
    async def test_stats_reflect_latest_write(self, services):
        await services.contracts.upsert_contract(contract_doc())
        before = await services.invoices.monthly_stats(2024, 2)
        await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        after = await services.invoices.monthly_stats(2024, 2)

        assert before.actual_month.ron == 0
        assert after.actual_month.ron == pytest.approx(5950)
        assert after.prognosis_month.eur == pytest.approx(1000)

    @pytest.mark.asyncio
    async def test_delete_unknown_invoice(self, services):
        with pytest.raises(NotFoundError):
            await services.invoices.delete_invoice("nope")


class TestSideEffects:

    @pytest.mark.asyncio
    async def test_events_and_messages(self, services):
        received = []
        services.events.subscribe(INVOICE_ISSUED, lambda event, payload: received.append(payload))
        services.events.subscribe(INVOICE_DELETED, lambda event, payload: received.append(payload))
        await services.contracts.upsert_contract(contract_doc())

        invoice, _ = await services.invoices.issue_invoice(_request(), as_of=AS_OF)
        await services.invoices.delete_invoice(invoice.id)

        assert [p["id"] for p in received] == [invoice.id, invoice.id]
        messages = await services.store.find(MESSAGES)
        assert [m["event"] for m in messages] == [INVOICE_ISSUED, INVOICE_DELETED]

    @pytest.mark.asyncio
    async def test_pdf_attached(self, services):
        services.invoices.pdf_writer = AsyncMock(return_value="media/invoices/MS-2024-00001.pdf")
        await services.contracts.upsert_contract(contract_doc())

        invoice, _ = await services.invoices.issue_invoice(_request(), as_of=AS_OF)

        assert invoice.pdf_url == "media/invoices/MS-2024-00001.pdf"
        assert (await services.store.get(INVOICES, invoice.id))["pdfUrl"] == invoice.pdf_url

    @pytest.mark.asyncio
    async def test_pdf_failure_keeps_invoice(self, services):
        services.invoices.pdf_writer = AsyncMock(side_effect=OSError("disk full"))
        await services.contracts.upsert_contract(contract_doc())

        invoice, created = await services.invoices.issue_invoice(_request(), as_of=AS_OF)

        assert created
        assert invoice.pdf_url is None
        assert await services.store.get(INVOICES, invoice.id) is not None
