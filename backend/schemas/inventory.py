from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from schemas.common import Pagination


AdjustmentType = Literal["adjustment", "restock"]


def _strip_or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class InventoryItemCreate(BaseModel):
    name: str
    category: str
    quantity: int = 0
    sku: Optional[str] = None
    unit_cost: Decimal = Decimal("0")
    selling_price: Decimal = Decimal("0")
    min_stock_level: int = 5
    max_stock_level: int = 1000
    supplier: Optional[str] = None
    location: Optional[str] = None

    @field_validator("name", "category")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("name")
    @classmethod
    def _name_length(cls, v: str) -> str:
        if len(v) > 64:
            raise ValueError("name must be at most 64 characters")
        return v

    @field_validator("sku", "supplier", "location")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)

    @field_validator("quantity", "min_stock_level", "max_stock_level")
    @classmethod
    def _non_negative_int(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("unit_cost", "selling_price")
    @classmethod
    def _non_negative_money(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def _levels(self):
        if self.max_stock_level < self.min_stock_level:
            raise ValueError("max_stock_level must be >= min_stock_level")
        return self


class InventoryItemUpdate(BaseModel):
    """Quantity is not editable here; use the adjust endpoint."""

    name: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    min_stock_level: Optional[int] = None
    max_stock_level: Optional[int] = None
    supplier: Optional[str] = None
    location: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("name", "category")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("min_stock_level", "max_stock_level")
    @classmethod
    def _non_negative_int(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("unit_cost", "selling_price")
    @classmethod
    def _non_negative_money(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v


class StockAdjustRequest(BaseModel):
    quantity: int
    type: AdjustmentType = "adjustment"
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None

    @field_validator("notes", "idempotency_key")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)

    @model_validator(mode="after")
    def _sign(self):
        if self.quantity == 0:
            raise ValueError("quantity must not be zero")
        if self.type == "restock" and self.quantity < 0:
            raise ValueError("restock quantity must be positive")
        return self


class InventoryItemOut(BaseModel):
    id: UUID
    name: str
    sku: Optional[str] = None
    category_id: UUID
    category_name: Optional[str] = None
    quantity: int
    unit_cost: float
    selling_price: float
    min_stock_level: int
    max_stock_level: int
    supplier: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StockMovementOut(BaseModel):
    id: UUID
    inventory_item_id: UUID
    change: int
    quantity_after: int
    reason: str
    note: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[UUID] = None
    created_at: datetime
    created_by_user_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class InventoryItemDetail(InventoryItemOut):
    recent_movements: List[StockMovementOut] = []


class InventoryList(BaseModel):
    items: List[InventoryItemOut]
    pagination: Pagination


class StockMovementList(BaseModel):
    movements: List[StockMovementOut]
    pagination: Pagination


class AdjustmentOut(BaseModel):
    item: InventoryItemOut
    movement: StockMovementOut
    replayed: bool = False


class LowStockItem(InventoryItemOut):
    fill_ratio: float
