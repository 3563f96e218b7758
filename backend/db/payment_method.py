import uuid
from sqlalchemy import Column, String
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    code = Column(String(16), nullable=True, unique=True)
    name = Column(String(32), nullable=False, unique=True, index=True)

    @property
    def to_schema(self):
        return {"id": self.id, "code": self.code, "name": self.name}
