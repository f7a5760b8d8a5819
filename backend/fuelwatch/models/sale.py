"""Fuel sale (transaction) models."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field, field_validator


class SaleBase(BaseModel):
    """One metered fuel-dispensing transaction.

    Sales are immutable once recorded; detection only reads them.
    """

    station_id: int = Field(..., description="Owning station")
    sold_at: datetime = Field(..., description="Transaction timestamp")
    liters: float = Field(..., gt=0, description="Liters dispensed")
    amount: float = Field(..., gt=0, description="Total amount charged")
    invoice_number: str = Field(
        ...,
        max_length=30,
        description="Invoice / transaction number",
    )

    @field_validator("sold_at")
    @classmethod
    def not_in_future(cls, v: datetime) -> datetime:
        now = datetime.now(v.tzinfo) if v.tzinfo else datetime.now()
        if v > now:
            raise ValueError("sale timestamp is in the future")
        return v

    @computed_field
    @property
    def unit_price(self) -> float:
        return self.amount / self.liters


class SaleCreate(SaleBase):
    """Sale ingestion request."""


class Sale(SaleBase):
    """Stored sale."""

    sale_id: int
