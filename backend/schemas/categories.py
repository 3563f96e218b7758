from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class CategoryRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    profit_percentage: float
    color_code: str
    item_count: int = 0
    created_at: datetime


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=32)
    description: Optional[str] = None
    profit_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=1000)
    color_code: str = Field(default="#3B82F6", pattern=COLOR_PATTERN)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=32)
    description: Optional[str] = None
    profit_percentage: Optional[Decimal] = Field(default=None, ge=0, le=1000)
    color_code: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
