import uuid
from sqlalchemy import Column, DateTime, Numeric, String, Text
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base, utcnow


class Category(Base):
    __tablename__ = "categories"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(32), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    profit_percentage = Column(Numeric(6, 2), nullable=False, default=0)
    color_code = Column(String(7), nullable=False, default="#3B82F6")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship("InventoryItem", back_populates="category")
