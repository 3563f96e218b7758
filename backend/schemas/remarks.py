from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class RemarkCreate(BaseModel):
    message: str = Field(min_length=1, max_length=1000)

    @field_validator("message")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message is required")
        return v


class RemarkRead(BaseModel):
    id: UUID
    message: str
    created_by_user_id: Optional[UUID] = None
    created_by_name: Optional[str] = None
    created_at: datetime
