"""Sales and returns; each one is a single transaction around a stock adjustment."""
from __future__ import annotations

import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from db.branch import Branch
from db.category import Category
from db.inventory.item import InventoryItem
from db.payment_method import PaymentMethod
from db.sale import Sale
from services.stock import (
    CONFLICT_MESSAGE,
    ReasonTag,
    apply_adjustment,
    commit_unit_of_work,
    is_conflict_error,
    set_lock_timeout,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
_INVOICE_ALPHABET = string.ascii_lowercase + string.digits


def generate_invoice_number() -> str:
    suffix = "".join(secrets.choice(_INVOICE_ALPHABET) for _ in range(9))
    return f"INV-{int(time.time() * 1000)}-{suffix}"


def prorate_price(price: Decimal, original_quantity: int, remaining_quantity: int) -> Decimal:
    """original_price * (remaining / original), to the cent."""
    if original_quantity <= 0:
        raise InvalidInput("original quantity must be positive")
    return (Decimal(price) * Decimal(remaining_quantity) / Decimal(original_quantity)).quantize(CENTS)


async def _get_sale_by_invoice(session: AsyncSession, invoice_number: str) -> Optional[Sale]:
    res = await session.execute(select(Sale).where(Sale.invoice_number == invoice_number))
    return res.scalar_one_or_none()


async def record_sale(
    session: AsyncSession,
    *,
    item_name: str,
    quantity: int,
    payment_method: str,
    actor_id: Optional[UUID],
    price: Optional[Decimal] = None,
    discount_amount: Decimal = Decimal("0"),
    tax_amount: Decimal = Decimal("0"),
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    branch_id: Optional[UUID] = None,
    invoice_number: Optional[str] = None,
    lock_timeout_ms: Optional[int] = None,
) -> Tuple[Sale, bool]:
    """
    Record a sale and decrement stock.

    Returns (sale, created). When `invoice_number` is given and already on
    file, the stored sale is returned with created=False and stock is left
    alone, so a retried submission does not sell twice.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("quantity must be a positive integer")

    try:
        if invoice_number:
            existing = await _get_sale_by_invoice(session, invoice_number)
            if existing is not None:
                logger.info("Duplicate sale submission ignored: invoice=%s", invoice_number)
                return existing, False

        item = (
            await session.execute(select(InventoryItem).where(InventoryItem.name == item_name))
        ).scalar_one_or_none()
        if item is None:
            raise NotFound("Item not found")
        if item.quantity < quantity:
            raise InsufficientStock(available=int(item.quantity), requested=quantity)

        pm = (
            await session.execute(select(PaymentMethod).where(PaymentMethod.name == payment_method))
        ).scalar_one_or_none()
        if pm is None:
            raise NotFound("Payment method not found")

        if branch_id is not None:
            branch = (await session.execute(select(Branch.id).where(Branch.id == branch_id))).first()
            if branch is None:
                raise NotFound("Branch not found")

        category_name = (
            await session.execute(select(Category.name).where(Category.id == item.category_id))
        ).scalar_one_or_none()

        unit_price = Decimal(price) if price is not None else Decimal(item.selling_price)
        discount = Decimal(discount_amount or 0)
        tax = Decimal(tax_amount or 0)
        total = (unit_price * quantity - discount + tax).quantize(CENTS)
        if total < 0:
            raise InvalidInput("discount cannot exceed the sale total")

        invoice = invoice_number or generate_invoice_number()
        sale = Sale(
            invoice_number=invoice,
            inventory_item_id=item.id,
            item_name=item.name,
            category_name=category_name,
            quantity=quantity,
            unit_price=unit_price.quantize(CENTS),
            price=total,
            discount_amount=discount,
            tax_amount=tax,
            payment_method_id=pm.id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            branch_id=branch_id,
            user_id=actor_id,
        )
        await set_lock_timeout(session, lock_timeout_ms)
        session.add(sale)
        try:
            await session.flush()
        except IntegrityError:
            # Another submission of the same invoice was inserted after our lookup.
            if not invoice_number:
                raise
            await session.rollback()
            existing = await _get_sale_by_invoice(session, invoice_number)
            if existing is None:
                raise
            logger.info("Duplicate sale submission ignored: invoice=%s", invoice_number)
            return existing, False

        await apply_adjustment(
            session,
            item,
            -quantity,
            ReasonTag.SALE,
            actor_id,
            f"Sale: {invoice}",
            source_type="sale",
            source_id=sale.id,
        )
    except DBAPIError as exc:
        await session.rollback()
        if is_conflict_error(exc):
            raise Conflict(CONFLICT_MESSAGE) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    try:
        await commit_unit_of_work(session)
    except IntegrityError:
        # Lost a race with a concurrent submission of the same invoice.
        if not invoice_number:
            raise
        existing = await _get_sale_by_invoice(session, invoice_number)
        if existing is None:
            raise
        return existing, False

    logger.info("Sale recorded: invoice=%s item=%s quantity=%s total=%s", invoice, item_name, quantity, total)
    return sale, True


async def process_return(
    session: AsyncSession,
    *,
    sale_id: UUID,
    quantity: int,
    actor_id: Optional[UUID],
    reason: Optional[str] = None,
    lock_timeout_ms: Optional[int] = None,
) -> Tuple[Optional[Sale], int]:
    """
    Put returned units back in stock and shrink (or remove) the sale.

    Returns (sale, new_item_quantity); sale is None after a full return.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("Return quantity must be a positive integer")

    try:
        await set_lock_timeout(session, lock_timeout_ms)
        sale = (
            await session.execute(select(Sale).where(Sale.id == sale_id).with_for_update())
        ).scalar_one_or_none()
        if sale is None:
            raise NotFound("Sale not found")
        if quantity > sale.quantity:
            raise InvalidInput("Return quantity cannot exceed sale quantity")

        result = await apply_adjustment(
            session,
            sale.inventory_item_id,
            quantity,
            ReasonTag.RETURN,
            actor_id,
            f"Return: {reason or 'Customer return'}",
            source_type="sale",
            source_id=sale.id,
        )

        if quantity < sale.quantity:
            remaining = sale.quantity - quantity
            sale.price = prorate_price(sale.price, sale.quantity, remaining)
            sale.quantity = remaining
            kept: Optional[Sale] = sale
        else:
            await session.delete(sale)
            kept = None
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
    logger.info("Return processed: sale_id=%s quantity=%s full=%s", sale_id, quantity, kept is None)
    return kept, result.new_quantity
