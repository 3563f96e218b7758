"""Imports every model so Base.metadata knows all tables."""
from .users import User  # noqa: F401
from .category import Category  # noqa: F401
from .branch import Branch  # noqa: F401
from .payment_method import PaymentMethod  # noqa: F401
from .remark import Remark  # noqa: F401
from .inventory.item import InventoryItem  # noqa: F401
from .inventory.movement import StockMovement  # noqa: F401
from .sale import Sale  # noqa: F401
from .outgoing import OutgoingStock  # noqa: F401
