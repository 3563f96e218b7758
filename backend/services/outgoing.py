from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from db.branch import Branch
from db.category import Category
from db.inventory.item import InventoryItem
from db.outgoing import OutgoingStock
from services.stock import (
    CONFLICT_MESSAGE,
    ReasonTag,
    apply_adjustment,
    commit_unit_of_work,
    is_conflict_error,
    set_lock_timeout,
)

logger = logging.getLogger(__name__)


async def record_outgoing(
    session: AsyncSession,
    *,
    item_name: str,
    quantity: int,
    actor_id: Optional[UUID],
    branch_name: Optional[str] = None,
    lock_timeout_ms: Optional[int] = None,
) -> OutgoingStock:
    """Ship stock out to a branch: outgoing record + ledger entry, or neither."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("quantity must be a positive integer")

    try:
        item = (
            await session.execute(select(InventoryItem).where(InventoryItem.name == item_name))
        ).scalar_one_or_none()
        if item is None:
            raise NotFound("Item not found")
        if item.quantity < quantity:
            raise InsufficientStock(available=int(item.quantity), requested=quantity)

        branch_id = None
        if branch_name:
            branch_id = (
                await session.execute(select(Branch.id).where(Branch.name == branch_name))
            ).scalar_one_or_none()
            if branch_id is None:
                raise NotFound("Branch not found")

        category_name = (
            await session.execute(select(Category.name).where(Category.id == item.category_id))
        ).scalar_one_or_none()

        record = OutgoingStock(
            inventory_item_id=item.id,
            item_name=item.name,
            category_name=category_name,
            branch_id=branch_id,
            quantity=quantity,
            user_id=actor_id,
        )
        await set_lock_timeout(session, lock_timeout_ms)
        session.add(record)
        await session.flush()

        note = f"Outgoing to {branch_name}" if branch_name else "Outgoing"
        await apply_adjustment(
            session,
            item,
            -quantity,
            ReasonTag.OUTGOING,
            actor_id,
            note,
            source_type="outgoing",
            source_id=record.id,
        )
    except DBAPIError as exc:
        await session.rollback()
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    await commit_unit_of_work(session)
    logger.info("Outgoing recorded: item=%s quantity=%s branch=%s", item_name, quantity, branch_name)
    return record


async def cancel_outgoing(
    session: AsyncSession,
    outgoing_id: UUID,
    actor_id: Optional[UUID],
    lock_timeout_ms: Optional[int] = None,
) -> int:
    """Remove an outgoing record and book the units back in; returns the new item quantity."""
    try:
        await set_lock_timeout(session, lock_timeout_ms)
        record = (
            await session.execute(select(OutgoingStock).where(OutgoingStock.id == outgoing_id).with_for_update())
        ).scalar_one_or_none()
        if record is None:
            raise NotFound("Record not found")

        result = await apply_adjustment(
            session,
            record.inventory_item_id,
            int(record.quantity),
            ReasonTag.RETURN,
            actor_id,
            f"Outgoing {record.id} cancelled",
            source_type="outgoing",
            source_id=record.id,
        )
        await session.delete(record)
        await session.flush()
    except DBAPIError as exc:
        await session.rollback()
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    await commit_unit_of_work(session)
    logger.info("Outgoing cancelled: id=%s", outgoing_id)
    return result.new_quantity
