"""
Stock adjustment: the only code path that changes InventoryItem.quantity.

Every change is a guarded counter update plus one StockMovement row, issued in
the caller's transaction. `apply_adjustment` does the work without committing so
callers (sales, outgoing) can commit their own record together with it;
`adjust` is the standalone unit of work.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from core.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from db.category import Category
from db.database import utcnow
from db.inventory.item import InventoryItem
from db.inventory.movement import StockMovement

logger = logging.getLogger(__name__)


class ReasonTag(str, Enum):
    INITIAL_STOCK = "initial_stock"
    RESTOCK = "restock"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    SALE = "sale"
    RETURN = "return"
    OUTGOING = "outgoing"


# Required sign of the delta per reason; None means either sign.
REASON_SIGNS: Dict[ReasonTag, Optional[int]] = {
    ReasonTag.INITIAL_STOCK: 1,
    ReasonTag.RESTOCK: 1,
    ReasonTag.MANUAL_ADJUSTMENT: None,
    ReasonTag.SALE: -1,
    ReasonTag.RETURN: 1,
    ReasonTag.OUTGOING: -1,
}

# sqlstates: lock_not_available, serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = {"55P03", "40001", "40P01"}

CONFLICT_MESSAGE = "Stock is being changed concurrently, retry the request"

ItemRef = Union[InventoryItem, UUID, str]


@dataclass(frozen=True)
class AdjustmentResult:
    new_quantity: int
    movement: StockMovement
    replayed: bool = False


def parse_reason(reason) -> ReasonTag:
    if isinstance(reason, ReasonTag):
        return reason
    try:
        return ReasonTag(str(reason).strip().lower().replace("-", "_"))
    except ValueError:
        raise InvalidInput(f"Unknown adjustment reason: {reason!r}")


def _validate_delta(delta, reason: ReasonTag) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidInput("delta must be an integer")
    if delta == 0:
        raise InvalidInput("delta must not be zero")
    sign = REASON_SIGNS[reason]
    if sign is not None and (delta > 0) != (sign > 0):
        direction = "positive" if sign > 0 else "negative"
        raise InvalidInput(f"{reason.value} adjustments must be {direction}")
    return delta


def is_conflict_error(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(exc).lower()


async def commit_unit_of_work(session: AsyncSession) -> None:
    try:
        await session.commit()
    except DBAPIError as exc:
        await session.rollback()
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise


async def set_lock_timeout(session: AsyncSession, lock_timeout_ms: Optional[int]) -> None:
    if not lock_timeout_ms:
        return
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        await session.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'"))
    elif dialect == "sqlite":
        # Connection-wide on SQLite; bounds the wait for another writer's lock.
        await session.execute(text(f"PRAGMA busy_timeout = {int(lock_timeout_ms)}"))


def _item_filter(item: ItemRef):
    if isinstance(item, InventoryItem):
        return InventoryItem.id == item.id
    if isinstance(item, UUID):
        return InventoryItem.id == item
    if isinstance(item, str) and item.strip():
        return InventoryItem.name == item.strip()
    raise InvalidInput("item must be an item name or id")


async def _lock_item(session: AsyncSession, item: ItemRef) -> Optional[InventoryItem]:
    res = await session.execute(
        select(InventoryItem)
        .where(_item_filter(item))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def apply_adjustment(
    session: AsyncSession,
    item: ItemRef,
    delta: int,
    reason,
    actor_id: Optional[UUID],
    note: Optional[str] = None,
    *,
    source_type: Optional[str] = None,
    source_id: Optional[UUID] = None,
    idempotency_key: Optional[str] = None,
    lock_timeout_ms: Optional[int] = None,
) -> AdjustmentResult:
    reason = parse_reason(reason)
    delta = _validate_delta(delta, reason)

    try:
        await set_lock_timeout(session, lock_timeout_ms)
        row = await _lock_item(session, item)
        if row is None:
            raise NotFound("Item not found")

        if idempotency_key:
            prior = (
                await session.execute(
                    select(StockMovement).where(StockMovement.idempotency_key == idempotency_key)
                )
            ).scalar_one_or_none()
            if prior is not None:
                if prior.inventory_item_id != row.id:
                    raise InvalidInput("idempotency key already used for another item")
                if prior.change != delta or prior.reason != reason.value:
                    raise InvalidInput("idempotency key already used for a different adjustment")
                return AdjustmentResult(new_quantity=int(prior.quantity_after), movement=prior, replayed=True)

        if row.quantity + delta < 0:
            raise InsufficientStock(available=int(row.quantity), requested=-delta)

        res = await session.execute(
            update(InventoryItem)
            .where(InventoryItem.id == row.id, InventoryItem.quantity + delta >= 0)
            .values(quantity=InventoryItem.quantity + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        current = (
            await session.execute(select(InventoryItem.quantity).where(InventoryItem.id == row.id))
        ).scalar_one()
        if res.rowcount != 1:
            # Another writer got there between our read and our write.
            raise InsufficientStock(available=int(current), requested=-delta)
        set_committed_value(row, "quantity", int(current))

        movement = StockMovement(
            inventory_item_id=row.id,
            change=delta,
            quantity_after=int(current),
            reason=reason.value,
            note=note,
            source_type=source_type,
            source_id=source_id,
            idempotency_key=idempotency_key,
            created_by_user_id=actor_id,
        )
        session.add(movement)
        await session.flush()
    except DBAPIError as exc:
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise

    return AdjustmentResult(new_quantity=int(current), movement=movement)


async def adjust(
    session: AsyncSession,
    item: ItemRef,
    delta: int,
    reason,
    actor_id: Optional[UUID],
    note: Optional[str] = None,
    **kwargs,
) -> AdjustmentResult:
    """
    Change an item's on-hand quantity by `delta` and record it in the ledger.

    Raises NotFound, InsufficientStock, InvalidInput or Conflict; on any failure
    the session is rolled back and neither the quantity nor the ledger changes.
    """
    try:
        result = await apply_adjustment(session, item, delta, reason, actor_id, note, **kwargs)
    except Exception:
        await session.rollback()
        raise
    await commit_unit_of_work(session)

    if result.replayed:
        logger.info("Adjustment replayed for key=%s", kwargs.get("idempotency_key"))
    else:
        logger.info(
            "Stock adjusted: item_id=%s delta=%s reason=%s quantity=%s actor=%s",
            result.movement.inventory_item_id,
            delta,
            result.movement.reason,
            result.new_quantity,
            actor_id,
        )
    return result


async def create_item(
    session: AsyncSession,
    *,
    name: str,
    category_name: str,
    initial_quantity: int,
    actor_id: Optional[UUID],
    sku: Optional[str] = None,
    unit_cost: Decimal = Decimal("0"),
    selling_price: Decimal = Decimal("0"),
    min_stock_level: int = 5,
    max_stock_level: int = 1000,
    supplier: Optional[str] = None,
    location: Optional[str] = None,
    lock_timeout_ms: Optional[int] = None,
) -> InventoryItem:
    """Create an item at zero and book its opening balance as initial stock."""
    if initial_quantity is None or initial_quantity < 0:
        raise InvalidInput("initial quantity must be >= 0")

    try:
        category = (
            await session.execute(select(Category).where(Category.name == category_name))
        ).scalar_one_or_none()
        if category is None:
            raise InvalidInput("Category not found")

        existing = await session.execute(select(InventoryItem.id).where(InventoryItem.name == name))
        if existing.first() is not None:
            raise InvalidInput("Item with this name already exists")
        if sku:
            existing_sku = await session.execute(select(InventoryItem.id).where(InventoryItem.sku == sku))
            if existing_sku.first() is not None:
                raise InvalidInput("Item with this SKU already exists")

        item = InventoryItem(
            name=name,
            sku=sku or None,
            category_id=category.id,
            quantity=0,
            unit_cost=unit_cost,
            selling_price=selling_price,
            min_stock_level=min_stock_level,
            max_stock_level=max_stock_level,
            supplier=supplier,
            location=location,
            created_by_user_id=actor_id,
        )
        await set_lock_timeout(session, lock_timeout_ms)
        session.add(item)
        await session.flush()

        if initial_quantity > 0:
            await apply_adjustment(
                session,
                item,
                initial_quantity,
                ReasonTag.INITIAL_STOCK,
                actor_id,
                "Initial stock",
                lock_timeout_ms=lock_timeout_ms,
            )
    except IntegrityError as exc:
        await session.rollback()
        raise InvalidInput("Item with this name or SKU already exists") from exc
    except DBAPIError as exc:
        await session.rollback()
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise
    except Exception:
        await session.rollback()
        raise
    await commit_unit_of_work(session)
    logger.info("Item created: name=%s initial_quantity=%s", name, initial_quantity)
    return item


async def list_movements(
    session: AsyncSession,
    *,
    item_id: Optional[UUID] = None,
    reason=None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[StockMovement], int]:
    """Newest-first ledger scan with optional filters."""
    conditions = []
    if item_id is not None:
        conditions.append(StockMovement.inventory_item_id == item_id)
    if reason:
        conditions.append(StockMovement.reason == parse_reason(reason).value)
    if start is not None:
        conditions.append(StockMovement.created_at >= start)
    if end is not None:
        conditions.append(StockMovement.created_at <= end)

    total = (
        await session.execute(select(func.count()).select_from(StockMovement).where(*conditions))
    ).scalar_one()
    res = await session.execute(
        select(StockMovement)
        .where(*conditions)
        .order_by(StockMovement.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(res.scalars().all()), int(total)


async def ledger_total(session: AsyncSession, item_id: UUID) -> int:
    """Sum of every recorded delta for an item; equals its quantity."""
    res = await session.execute(
        select(func.coalesce(func.sum(StockMovement.change), 0)).where(StockMovement.inventory_item_id == item_id)
    )
    return int(res.scalar_one())
