from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from plugins.rentals.models.common import IsoDate, OptionalIsoDate, coerce_number


# ============================================
# Enums
# ============================================

class RentType(str, Enum):
    """Which schedule generates invoice occurrences"""
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CHOSEN_DATES = "chosenDates"


class InvoiceMonthMode(str, Enum):
    """current: bill the running month; next: bill next month in advance"""
    CURRENT = "current"
    NEXT = "next"


# ============================================
# Nested documents
# ============================================

class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ContractPartner(_Document):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    share_percent: Optional[float] = Field(None, ge=0, le=100, alias="sharePercent")

    @field_validator("share_percent", mode="before")
    @classmethod
    def _share(cls, v):
        return coerce_number(v)


class ContractExtension(_Document):
    doc_date: IsoDate = Field(..., alias="docDate")
    document: str = ""
    extended_until: IsoDate = Field(..., alias="extendedUntil")


class IrregularInvoice(_Document):
    """Fixed (month, day, amount) billed every year; stored under ``irregularInvoices``."""
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)
    amount_eur: float = Field(..., ge=0, alias="amountEUR")

    @field_validator("amount_eur", "month", "day", mode="before")
    @classmethod
    def _numbers(cls, v):
        return coerce_number(v)


class ChosenDateInvoice(_Document):
    date: IsoDate
    amount_eur: Optional[float] = Field(None, ge=0, alias="amountEUR")

    @field_validator("amount_eur", mode="before")
    @classmethod
    def _amount(cls, v):
        return coerce_number(v)


class IndexingDate(_Document):
    """One rent amendment: planned on forecastDate, effective on actualDate when known."""
    forecast_date: IsoDate = Field(..., alias="forecastDate")
    actual_date: OptionalIsoDate = Field(None, alias="actualDate")
    document: Optional[str] = None
    new_rent_amount: Optional[float] = Field(None, gt=0, alias="newRentAmount")
    done: bool = False

    @field_validator("new_rent_amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return coerce_number(v)

    @property
    def effective_date(self):
        return self.actual_date or self.forecast_date


class ContractScan(_Document):
    url: str
    title: Optional[str] = None


# ============================================
# Contract
# ============================================

_NUMERIC_FIELDS = (
    "amount_eur", "exchange_rate_ron", "tva_percent", "correction_percent",
    "payment_due_days", "monthly_invoice_day", "indexing_day", "indexing_month",
    "how_often_is_indexing",
)


class Contract(_Document):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    asset_id: Optional[str] = Field(None, alias="assetId")
    asset: Optional[str] = None
    owner_id: Optional[str] = Field(None, alias="ownerId")
    owner: Optional[str] = None
    partner_id: Optional[str] = Field(None, alias="partnerId")
    partner: str = Field(..., min_length=1)
    partners: List[ContractPartner] = Field(default_factory=list)

    signed_at: IsoDate = Field(..., alias="signedAt")
    start_date: IsoDate = Field(..., alias="startDate")
    end_date: IsoDate = Field(..., alias="endDate")
    contract_extensions: List[ContractExtension] = Field(default_factory=list, alias="contractExtensions")

    rent_type: RentType = Field(RentType.MONTHLY, alias="rentType")
    monthly_invoice_day: Optional[int] = Field(None, ge=1, le=31, alias="monthlyInvoiceDay")
    invoice_month_mode: InvoiceMonthMode = Field(InvoiceMonthMode.CURRENT, alias="invoiceMonthMode")
    # yearlyInvoices is the older name of the same schedule; only irregularInvoices is written
    irregular_invoices: List[IrregularInvoice] = Field(
        default_factory=list,
        alias="irregularInvoices",
        validation_alias=AliasChoices("irregularInvoices", "yearlyInvoices", "irregular_invoices"),
    )
    chosen_dates_invoices_dates: List[ChosenDateInvoice] = Field(
        default_factory=list, alias="chosenDatesInvoicesDates"
    )

    amount_eur: Optional[float] = Field(
        None,
        gt=0,
        alias="amountEUR",
        validation_alias=AliasChoices("amountEUR", "rentAmountEuro", "amount_eur"),
    )
    indexing_dates: List[IndexingDate] = Field(
        default_factory=list,
        alias="indexingDates",
        validation_alias=AliasChoices("indexingDates", "futureIndexingDates", "indexing_dates"),
    )

    exchange_rate_ron: Optional[float] = Field(None, gt=0, alias="exchangeRateRON")
    tva_percent: Optional[int] = Field(None, ge=0, le=100, alias="tvaPercent")
    correction_percent: Optional[float] = Field(None, ge=0, le=100, alias="correctionPercent")
    payment_due_days: Optional[int] = Field(None, ge=0, le=120, alias="paymentDueDays")

    indexing_day: Optional[int] = Field(None, ge=1, le=31, alias="indexingDay")
    indexing_month: Optional[int] = Field(None, ge=1, le=12, alias="indexingMonth")
    how_often_is_indexing: Optional[int] = Field(None, ge=1, le=12, alias="howOftenIsIndexing")

    scans: List[ContractScan] = Field(default_factory=list)
    scan_url: Optional[str] = Field(None, alias="scanUrl")

    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator(*_NUMERIC_FIELDS, mode="before")
    @classmethod
    def _numbers(cls, v):
        return coerce_number(v)

    @field_validator("rent_type", mode="before")
    @classmethod
    def _rent_type(cls, v):
        # "irregular" was used for yearly schedules in older records
        return RentType.YEARLY.value if v == "irregular" else v

    @model_validator(mode="before")
    @classmethod
    def _normalize_parties(cls, data: Any):
        """Fill partner/partners from each other and move the legacy scanUrl into scans."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        partners = data.get("partners") or []
        partner = data.get("partner")
        partner_id = data.get("partnerId", data.get("partner_id"))
        if not partners and partner:
            data["partners"] = [{"id": partner_id, "name": partner}]
        elif partners and not partner:
            first = partners[0]
            get = first.get if isinstance(first, dict) else lambda k, d=None: getattr(first, k, d)
            data["partner"] = get("name")
            if partner_id is None:
                data["partnerId"] = get("id")
        # the primary partner carries the contract's partnerId
        if partners and partner_id and isinstance(partners[0], dict) and not partners[0].get("id"):
            data["partners"] = [{**partners[0], "id": partner_id}, *partners[1:]]
        scan_url = data.get("scanUrl", data.get("scan_url"))
        if scan_url and not data.get("scans"):
            data["scans"] = [{"url": scan_url}]
        return data

    @model_validator(mode="after")
    def _check_consistency(self) -> "Contract":
        if self.start_date < self.signed_at:
            raise ValueError("startDate must be on or after signedAt")
        if self.end_date < self.start_date:
            raise ValueError("endDate must be on or after startDate")
        for i, ext in enumerate(self.contract_extensions):
            if ext.extended_until < self.end_date:
                raise ValueError(f"contractExtensions[{i}].extendedUntil must be on or after endDate")
            if ext.doc_date < self.signed_at:
                raise ValueError(f"contractExtensions[{i}].docDate must be on or after signedAt")
            if ext.doc_date > ext.extended_until:
                raise ValueError(f"contractExtensions[{i}].docDate must be on or before extendedUntil")

        if self.rent_type == RentType.YEARLY and not self.irregular_invoices:
            raise ValueError("irregularInvoices must contain at least one entry for yearly contracts")
        if self.rent_type == RentType.CHOSEN_DATES and not self.chosen_dates_invoices_dates:
            raise ValueError("chosenDatesInvoicesDates must contain at least one date")

        if self.partners and self.partners[0].name.strip() != self.partner.strip():
            raise ValueError("partners[0].name must match partner")
        if len(self.partners) > 1:
            total = sum(p.share_percent or 0 for p in self.partners)
            if total > 0 and abs(total - 100) > 0.01:
                raise ValueError(f"partners sharePercent must sum to 100 (got {total:g})")

        schedule = (self.indexing_day, self.indexing_month)
        if any(v is not None for v in schedule) and not all(v is not None for v in schedule):
            raise ValueError("indexingDay and indexingMonth must be set together")
        if self.how_often_is_indexing is not None and self.indexing_day is None:
            raise ValueError("howOftenIsIndexing requires indexingDay and indexingMonth")
        return self

    @property
    def has_indexing_schedule(self) -> bool:
        return self.indexing_day is not None and self.indexing_month is not None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
