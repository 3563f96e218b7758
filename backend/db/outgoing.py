import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base, utcnow


class OutgoingStock(Base):
    __tablename__ = "outgoing_stock"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    inventory_item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)
    item_name = Column(String(64), nullable=False, index=True)
    category_name = Column(String(32), nullable=True)
    branch_id = Column(GUID, ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    inventory_item = relationship("InventoryItem")
    branch = relationship("Branch")
    user = relationship("User")
