from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MoneyTotals(BaseModel):
    """RON with VAT, corrected EUR and RON without VAT."""
    model_config = ConfigDict(populate_by_name=True)

    ron: float = Field(0.0, alias="RON")
    eur: float = Field(0.0, alias="EUR")
    net_ron: float = Field(0.0, alias="NetRON")

    def add(self, ron: float, eur: float, net_ron: float) -> None:
        self.ron += ron
        self.eur += eur
        self.net_ron += net_ron


class MonthlyStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contracts_count: int = Field(..., alias="contractsCount")
    month: int
    year: int
    prognosis_month: MoneyTotals = Field(default_factory=MoneyTotals, alias="prognosisMonth")
    actual_month: MoneyTotals = Field(default_factory=MoneyTotals, alias="actualMonth")
    prognosis_annual: MoneyTotals = Field(default_factory=MoneyTotals, alias="prognosisAnnual")
    actual_annual: MoneyTotals = Field(default_factory=MoneyTotals, alias="actualAnnual")
    generated_at: datetime = Field(..., alias="generatedAt")


class InflationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_month: str = Field(..., alias="fromMonth")
    to_month: str = Field(..., alias="toMonth")
    percent: float
    method: Literal["index_ratio", "rate_average"]
    source: Literal["cache", "ecb", "eurostat", "fallback"]
    start_index: Optional[float] = Field(None, alias="startIndex")
    end_index: Optional[float] = Field(None, alias="endIndex")
    start_month: Optional[str] = Field(None, alias="startMonth")
    end_month: Optional[str] = Field(None, alias="endMonth")
