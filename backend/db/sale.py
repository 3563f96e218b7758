import uuid
from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from fastapi_users_db_sqlalchemy.generics import GUID

from .database import Base, utcnow


class Sale(Base):
    __tablename__ = "sales"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(64), nullable=False, unique=True, index=True)

    inventory_item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)
    # Denormalised so reports survive item renames.
    item_name = Column(String(64), nullable=False, index=True)
    category_name = Column(String(32), nullable=True, index=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)  # line total
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)

    payment_method_id = Column(GUID, ForeignKey("payment_methods.id", ondelete="RESTRICT"), nullable=False, index=True)
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    branch_id = Column(GUID, ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    inventory_item = relationship("InventoryItem")
    payment_method = relationship("PaymentMethod")
    branch = relationship("Branch")
    user = relationship("User")
