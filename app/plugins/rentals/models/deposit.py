from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plugins.rentals.models.common import coerce_number


class DepositType(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    PROMISSORY_NOTE = "promissory_note"


class DepositBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    contract_id: str = Field(..., min_length=1, alias="contractId")
    type: DepositType
    is_deposited: bool = Field(False, alias="isDeposited")
    returned: bool = False
    amount_eur: Optional[float] = Field(None, ge=0, alias="amountEUR")
    amount_ron: Optional[float] = Field(None, ge=0, alias="amountRON")
    note: Optional[str] = Field(None, max_length=500)

    @field_validator("amount_eur", "amount_ron", mode="before")
    @classmethod
    def _amounts(cls, v):
        return coerce_number(v)


class DepositCreate(DepositBase):
    pass


class DepositUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[DepositType] = None
    is_deposited: Optional[bool] = Field(None, alias="isDeposited")
    returned: Optional[bool] = None
    amount_eur: Optional[float] = Field(None, ge=0, alias="amountEUR")
    amount_ron: Optional[float] = Field(None, ge=0, alias="amountRON")
    note: Optional[str] = Field(None, max_length=500)


class Deposit(DepositBase):
    id: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DepositSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contract_id: str = Field(..., alias="contractId")
    count: int = 0
    deposited_count: int = Field(0, alias="depositedCount")
    returned_count: int = Field(0, alias="returnedCount")
    held_eur: float = Field(0.0, alias="heldEUR")
    held_ron: float = Field(0.0, alias="heldRON")
