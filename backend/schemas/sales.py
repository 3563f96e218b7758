from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schemas.common import Pagination


class SaleCreate(BaseModel):
    item_name: str
    quantity: int = Field(ge=1)
    payment_method: str
    price: Optional[Decimal] = Field(default=None, ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    branch_id: Optional[UUID] = None
    # Client-generated; resubmitting the same number returns the stored sale.
    invoice_number: Optional[str] = Field(default=None, max_length=64)

    @field_validator("item_name", "payment_method")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("customer_name", "customer_phone", "invoice_number")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SaleRead(BaseModel):
    id: UUID
    invoice_number: str
    inventory_item_id: UUID
    item_name: str
    category_name: Optional[str] = None
    quantity: int
    unit_price: float
    price: float
    discount_amount: float
    tax_amount: float
    payment_method_id: UUID
    payment_method: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    branch_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    created_at: datetime


class SaleReturnRequest(BaseModel):
    quantity: int = Field(ge=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class SaleReturnResult(BaseModel):
    returned_quantity: int
    fully_returned: bool
    item_quantity: int
    sale: Optional[SaleRead] = None


class SaleList(BaseModel):
    sales: List[SaleRead]
    pagination: Pagination
