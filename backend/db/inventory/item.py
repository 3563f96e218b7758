import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from ..database import Base, utcnow


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(64), nullable=False, unique=True, index=True)
    sku = Column(String(64), nullable=True, unique=True)

    category_id = Column(GUID, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Only services.stock writes this column.
    quantity = Column(Integer, nullable=False, default=0)

    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    selling_price = Column(Numeric(12, 2), nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=5)
    max_stock_level = Column(Integer, nullable=False, default=1000)

    supplier = Column(String, nullable=True)
    location = Column(String, nullable=True)

    created_by_user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="items")
    created_by_user = relationship("User")
    movements = relationship("StockMovement", back_populates="inventory_item")
