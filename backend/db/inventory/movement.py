import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from ..database import Base, utcnow


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)

    inventory_item_id = Column(
        GUID,
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    change = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(String(32), nullable=False, index=True)
    note = Column(Text, nullable=True)

    source_type = Column(String(32), nullable=True)
    source_id = Column(GUID, nullable=True, index=True)
    idempotency_key = Column(String(128), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    inventory_item = relationship("InventoryItem", back_populates="movements")
    created_by_user = relationship("User")
