import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base, utcnow


class Remark(Base):
    """Daily notice posted by staff. Not part of the stock ledger."""
    __tablename__ = "remarks"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    message = Column(Text, nullable=False)
    created_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    created_by_user = relationship("User")
