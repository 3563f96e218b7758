from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class PaymentMethodRead(BaseModel):
    id: UUID
    code: Optional[str] = None
    name: str
