from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plugins.rentals.models.common import IsoDate, OptionalIsoDate, coerce_number


def partner_key(partner_id: Optional[str], partner_name: Optional[str]) -> str:
    """Partner part of the invoice uniqueness key: id when known, else the name."""
    return (partner_id or partner_name or "").strip()


class Invoice(BaseModel):
    """Issued invoice. Every amount is stored as computed at issuance time."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    contract_id: str = Field(..., alias="contractId")
    contract_name: str = Field(..., alias="contractName")
    owner_id: Optional[str] = Field(None, alias="ownerId")
    owner: Optional[str] = None
    partner_id: Optional[str] = Field(None, alias="partnerId")
    partner: str

    issued_at: IsoDate = Field(..., alias="issuedAt")
    due_days: int = Field(0, ge=0, le=120, alias="dueDays")

    amount_eur: float = Field(..., ge=0, alias="amountEUR")
    correction_percent: float = Field(0, ge=0, le=100, alias="correctionPercent")
    corrected_amount_eur: float = Field(..., ge=0, alias="correctedAmountEUR")
    exchange_rate_ron: float = Field(..., ge=0, alias="exchangeRateRON")
    net_ron: float = Field(..., ge=0, alias="netRON")
    tva_percent: int = Field(0, ge=0, le=100, alias="tvaPercent")
    vat_ron: float = Field(..., ge=0, alias="vatRON")
    total_ron: float = Field(..., ge=0, alias="totalRON")

    number: Optional[str] = None
    note: Optional[str] = Field(None, max_length=1000)
    pdf_url: Optional[str] = Field(None, alias="pdfUrl")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @property
    def partner_key(self) -> str:
        return partner_key(self.partner_id, self.partner)

    @property
    def due_date(self):
        return self.issued_at + timedelta(days=self.due_days)

    def to_document(self) -> dict:
        doc = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        doc["partnerKey"] = self.partner_key
        return doc


class InvoiceSettings(BaseModel):
    """Numbering sequence for one owner."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    series: str = Field("MS", min_length=1, max_length=20)
    next_number: int = Field(1, ge=1, alias="nextNumber")
    pad_width: int = Field(5, ge=1, le=10, alias="padWidth")
    include_year: bool = Field(True, alias="includeYear")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("series")
    @classmethod
    def _series(cls, v: str) -> str:
        v = v.strip().upper()
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("series must be a single word")
        return v

    def format_number(self, sequence: int, year: int) -> str:
        padded = str(sequence).zfill(self.pad_width)
        if self.include_year:
            return f"{self.series}-{year}-{padded}"
        return f"{self.series}-{padded}"


class InvoiceSettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    series: Optional[str] = Field(None, min_length=1, max_length=20)
    next_number: Optional[int] = Field(None, ge=1, alias="nextNumber")
    pad_width: Optional[int] = Field(None, ge=1, le=10, alias="padWidth")
    include_year: Optional[bool] = Field(None, alias="includeYear")


class IssueInvoiceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contract_id: str = Field(..., alias="contractId")
    issued_at: IsoDate = Field(..., alias="issuedAt")
    partner_id: Optional[str] = Field(None, alias="partnerId")
    partner: Optional[str] = None
    amount_eur: Optional[float] = Field(None, gt=0, alias="amountEUR")
    exchange_rate_ron: Optional[float] = Field(None, gt=0, alias="exchangeRateRON")
    note: Optional[str] = Field(None, max_length=1000)

    @field_validator("amount_eur", "exchange_rate_ron", mode="before")
    @classmethod
    def _numbers(cls, v):
        return coerce_number(v)


class DueInvoice(BaseModel):
    """An invoice occurrence expected in a month, before issuance."""
    model_config = ConfigDict(populate_by_name=True)

    contract_id: str = Field(..., alias="contractId")
    contract_name: str = Field(..., alias="contractName")
    issued_at: IsoDate = Field(..., alias="issuedAt")
    amount_eur: float = Field(..., alias="amountEUR")
    partner_id: Optional[str] = Field(None, alias="partnerId")
    partner: str
    share_percent: Optional[float] = Field(None, alias="sharePercent")
    fraction: float = 1.0
    period_start: OptionalIsoDate = Field(None, alias="periodStart")
    already_issued: bool = Field(False, alias="alreadyIssued")
    invoice_id: Optional[str] = Field(None, alias="invoiceId")

    @property
    def key(self):
        return (self.contract_id, self.issued_at.isoformat(), partner_key(self.partner_id, self.partner))
