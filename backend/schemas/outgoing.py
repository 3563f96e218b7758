from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schemas.common import Pagination


class OutgoingCreate(BaseModel):
    item_name: str
    quantity: int = Field(ge=1)
    branch_name: Optional[str] = None

    @field_validator("item_name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("branch_name")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class OutgoingRead(BaseModel):
    id: UUID
    inventory_item_id: UUID
    item_name: str
    category_name: Optional[str] = None
    branch_id: Optional[UUID] = None
    quantity: int
    user_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OutgoingList(BaseModel):
    records: List[OutgoingRead]
    pagination: Pagination
