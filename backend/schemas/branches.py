from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BranchRead(BaseModel):
    id: UUID
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    manager_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BranchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=16)
    address: Optional[str] = None
    phone: Optional[str] = None
    manager_id: Optional[UUID] = None


class BranchUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=16)
    address: Optional[str] = None
    phone: Optional[str] = None
    manager_id: Optional[UUID] = None
