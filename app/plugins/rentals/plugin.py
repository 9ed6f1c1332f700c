from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError

from core.config import settings
from plugins.rentals.billing.indexing import refresh_indexing_dates
from plugins.rentals.billing.invoice_math import compute_invoice_from_contract
from plugins.rentals.billing.rent import current_rent_amount, effective_end_date
from plugins.rentals.container import RentalsServices, get_services
from plugins.rentals.helpers import serialize_model
from plugins.rentals.models import (
    DepositCreate, DepositUpdate, InvoiceSettingsUpdate, IssueInvoiceRequest,
)
from plugins.rentals.services.pdf_service import render_invoice_pdf
from utils.date_helper import today_utc
from utils.exceptions import (
    ExternalServiceError, InvoiceNumberAllocationError, InvoiceValidationError,
    NotFoundError, RentalsError, StoreUnavailableError,
)

router = APIRouter(prefix="/rentals", tags=["Rentals"])


# ===============================================================
# ERRORS
# ===============================================================

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvoiceValidationError)
    async def _invalid_invoice(request: Request, exc: InvoiceValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})

    @app.exception_handler(ValidationError)
    async def _invalid_model(request: Request, exc: ValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or None, "message": err["msg"]}
            for err in exc.errors(include_url=False, include_context=False, include_input=False)
        ]
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(ExternalServiceError)
    async def _external(request: Request, exc: ExternalServiceError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(InvoiceNumberAllocationError)
    @app.exception_handler(StoreUnavailableError)
    async def _unavailable(request: Request, exc: RentalsError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})


def _month_params(year: Optional[int], month: Optional[int]):
    today = today_utc()
    year = year or today.year
    month = month or today.month
    if not 1 <= month <= 12:
        raise HTTPException(422, "month must be between 1 and 12")
    return year, month


def _check_cron_secret(secret: Optional[str]):
    if settings.CRON_SECRET and secret != settings.CRON_SECRET:
        raise HTTPException(401, "Invalid cron secret")


# ===============================================================
# CONTRACTS
# ===============================================================

def _contract_view(contract, as_of: date) -> dict:
    data = serialize_model(contract)
    data["effectiveEndDate"] = effective_end_date(contract).isoformat()
    data["currentRentEUR"] = current_rent_amount(contract, as_of)
    return data


@router.get("/contracts")
async def list_contracts(
    asset_id: Optional[str] = Query(None, alias="assetId"),
    svc: RentalsServices = Depends(get_services),
):
    contracts = await (svc.contracts.list_by_asset(asset_id) if asset_id else svc.contracts.list_contracts())
    today = today_utc()
    return [_contract_view(c, today) for c in contracts]


@router.get("/contracts/{contract_id}")
async def get_contract(contract_id: str, svc: RentalsServices = Depends(get_services)):
    return _contract_view(await svc.contracts.get_contract(contract_id), today_utc())


@router.put("/contracts")
async def upsert_contract(payload: Dict[str, Any] = Body(...), svc: RentalsServices = Depends(get_services)):
    contract = await svc.contracts.upsert_contract(payload)
    return _contract_view(contract, today_utc())


@router.delete("/contracts/{contract_id}", status_code=204)
async def delete_contract(contract_id: str, svc: RentalsServices = Depends(get_services)):
    await svc.contracts.delete_contract(contract_id)
    return Response(status_code=204)


@router.get("/contracts/{contract_id}/indexing-schedule")
async def indexing_schedule(contract_id: str, svc: RentalsServices = Depends(get_services)):
    contract = await svc.contracts.get_contract(contract_id)
    return [serialize_model(entry) for entry in refresh_indexing_dates(contract)]


@router.get("/contracts/{contract_id}/invoices")
async def contract_invoices(contract_id: str, svc: RentalsServices = Depends(get_services)):
    return [serialize_model(inv) for inv in await svc.invoices.list_invoices_for_contract(contract_id)]


@router.get("/contracts/{contract_id}/invoice-preview")
async def invoice_preview(
    contract_id: str,
    issued_at: date = Query(..., alias="issuedAt"),
    svc: RentalsServices = Depends(get_services),
):
    contract = await svc.contracts.get_contract(contract_id)
    return serialize_model(compute_invoice_from_contract(contract, issued_at))


# ===============================================================
# INVOICES
# ===============================================================

@router.get("/invoices")
async def list_invoices(
    year: Optional[int] = None,
    month: Optional[int] = None,
    svc: RentalsServices = Depends(get_services),
):
    if year and not month:
        invoices = await svc.invoices.fetch_invoices_for_year(year)
    else:
        invoices = await svc.invoices.list_invoices_for_month(*_month_params(year, month))
    return [serialize_model(inv) for inv in invoices]


@router.get("/invoices/due")
async def due_invoices(
    year: Optional[int] = None,
    month: Optional[int] = None,
    svc: RentalsServices = Depends(get_services),
):
    return [serialize_model(d) for d in await svc.invoices.due_invoices(*_month_params(year, month))]


@router.post("/invoices/issue")
async def issue_invoice(request: IssueInvoiceRequest, svc: RentalsServices = Depends(get_services)):
    invoice, created = await svc.invoices.issue_invoice(request)
    return JSONResponse(
        status_code=201 if created else 200,
        content={"created": created, "invoice": serialize_model(invoice)},
    )


@router.post("/invoices/issue-due")
async def issue_due_invoices(
    year: Optional[int] = None,
    month: Optional[int] = None,
    svc: RentalsServices = Depends(get_services),
):
    """Issue every due invoice of the month that is not issued yet."""
    issued, skipped = [], []
    for due in await svc.invoices.due_invoices(*_month_params(year, month)):
        if due.already_issued:
            continue
        try:
            invoice, created = await svc.invoices.issue_due_invoice(due)
        except InvoiceValidationError as e:
            skipped.append({"contractId": due.contract_id, "partner": due.partner, "reason": str(e)})
            continue
        if created:
            issued.append(serialize_model(invoice))
    return {"issued": issued, "skipped": skipped}


@router.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, svc: RentalsServices = Depends(get_services)):
    return serialize_model(await svc.invoices.get_invoice(invoice_id))


@router.delete("/invoices/{invoice_id}")
async def delete_invoice(invoice_id: str, svc: RentalsServices = Depends(get_services)):
    invoice = await svc.invoices.delete_invoice(invoice_id)
    return {"deleted": invoice.id}


@router.get("/invoices/{invoice_id}/pdf")
async def invoice_pdf(invoice_id: str, svc: RentalsServices = Depends(get_services)):
    invoice = await svc.invoices.get_invoice(invoice_id)
    pdf = render_invoice_pdf(invoice)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{invoice.id}.pdf"'},
    )


# ===============================================================
# NUMBERING SETTINGS
# ===============================================================

@router.get("/invoice-settings")
async def get_invoice_settings(
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    owner: Optional[str] = None,
    svc: RentalsServices = Depends(get_services),
):
    return serialize_model(await svc.numbering.get_invoice_settings(owner_id, owner))


@router.put("/invoice-settings")
async def save_invoice_settings(
    update: InvoiceSettingsUpdate,
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    owner: Optional[str] = None,
    svc: RentalsServices = Depends(get_services),
):
    return serialize_model(await svc.numbering.save_invoice_settings(owner_id, owner, update))


# ===============================================================
# STATS
# ===============================================================

@router.get("/stats")
async def monthly_stats(
    year: Optional[int] = None,
    month: Optional[int] = None,
    svc: RentalsServices = Depends(get_services),
):
    stats = await svc.invoices.monthly_stats(*_month_params(year, month))
    return JSONResponse(content=serialize_model(stats), headers={"Cache-Control": "no-store"})


# ===============================================================
# DEPOSITS
# ===============================================================

@router.get("/contracts/{contract_id}/deposits")
async def list_deposits(contract_id: str, svc: RentalsServices = Depends(get_services)):
    return [serialize_model(d) for d in await svc.deposits.list_deposits(contract_id)]


@router.get("/contracts/{contract_id}/deposits/summary")
async def deposits_summary(contract_id: str, svc: RentalsServices = Depends(get_services)):
    return serialize_model(await svc.deposits.summary(contract_id))


@router.post("/deposits", status_code=201)
async def create_deposit(data: DepositCreate, svc: RentalsServices = Depends(get_services)):
    return serialize_model(await svc.deposits.create_deposit(data))


@router.patch("/deposits/{deposit_id}")
async def update_deposit(deposit_id: str, data: DepositUpdate, svc: RentalsServices = Depends(get_services)):
    return serialize_model(await svc.deposits.update_deposit(deposit_id, data))


@router.post("/deposits/{deposit_id}/toggle")
async def toggle_deposit(deposit_id: str, svc: RentalsServices = Depends(get_services)):
    return serialize_model(await svc.deposits.toggle_deposited(deposit_id))


@router.delete("/deposits/{deposit_id}", status_code=204)
async def delete_deposit(deposit_id: str, svc: RentalsServices = Depends(get_services)):
    await svc.deposits.delete_deposit(deposit_id)
    return Response(status_code=204)


# ===============================================================
# INFLATION & EXCHANGE
# ===============================================================

class FallbackEntry(BaseModel):
    index: float = Field(..., gt=0)


@router.get("/inflation")
async def euro_inflation(
    from_: str = Query(..., alias="from"),
    to: Optional[str] = None,
    refresh: bool = False,
    svc: RentalsServices = Depends(get_services),
):
    try:
        result = await svc.inflation.get_euro_inflation_percent(from_, to, force_refresh=refresh)
    except ValueError as e:
        raise HTTPException(422, str(e))
    if result is None:
        return {"available": False, "fromMonth": from_, "toMonth": to}
    return {"available": True, **serialize_model(result)}


@router.get("/inflation/index/{month}")
async def hicp_index(month: str, svc: RentalsServices = Depends(get_services)):
    index = await svc.inflation.get_hicp_index(month)
    if index is None:
        raise HTTPException(404, f"No HICP index known for {month}")
    return {"month": month, "index": index}


@router.put("/inflation/fallback/{month}")
async def upsert_fallback(month: str, entry: FallbackEntry, svc: RentalsServices = Depends(get_services)):
    try:
        return svc.inflation.upsert_hicp_fallback(month, entry.index)
    except ValueError as e:
        raise HTTPException(422, str(e))


@router.delete("/inflation/fallback/{month}")
async def delete_fallback(month: str, svc: RentalsServices = Depends(get_services)):
    return svc.inflation.delete_hicp_fallback(month)


@router.get("/exchange/eur-ron")
async def eur_ron(refresh: bool = False, svc: RentalsServices = Depends(get_services)):
    return await svc.exchange.get_eur_ron(force_refresh=refresh)


# ===============================================================
# CRON
# ===============================================================

@router.post("/cron/indexing-reminders")
async def cron_indexing_reminders(
    as_of: Optional[date] = Query(None, alias="asOf"),
    x_cron_secret: Optional[str] = Header(None),
    svc: RentalsServices = Depends(get_services),
):
    _check_cron_secret(x_cron_secret)
    sent: List[dict] = await svc.reminders.run(as_of or today_utc())
    return {"sent": len(sent), "reminders": sent}


@router.post("/cron/exchange-refresh")
async def cron_exchange_refresh(
    x_cron_secret: Optional[str] = Header(None),
    svc: RentalsServices = Depends(get_services),
):
    _check_cron_secret(x_cron_secret)
    return await svc.exchange.refresh_contracts()


# ===============================================================
# STATUS
# ===============================================================

@router.get("/status")
async def store_status(svc: RentalsServices = Depends(get_services)):
    return {
        "mode": svc.store.mode,
        "concurrencySafe": svc.store.concurrency_safe,
        "limitation": svc.store.limitation,
    }
