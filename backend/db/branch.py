import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base, utcnow


class Branch(Base):
    __tablename__ = "branches"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(16), nullable=False, unique=True, index=True)
    address = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    manager_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    manager = relationship("User")
