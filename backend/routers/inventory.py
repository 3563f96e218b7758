import logging
from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, require_permission, role_of
from core.config import Settings, get_settings
from core.errors import InvalidInput, NotFound, StockError
from core.policy import Permission, adjustment_permission, has_permission
from db.category import Category
from db.database import get_async_session
from db.inventory.item import InventoryItem as InventoryItemModel
from db.inventory.movement import StockMovement as StockMovementModel
from db.sale import Sale as SaleModel
from db.users import User
from schemas.common import Pagination
from schemas.inventory import (
    AdjustmentOut,
    InventoryItemCreate,
    InventoryItemDetail,
    InventoryItemOut,
    InventoryItemUpdate,
    InventoryList,
    LowStockItem,
    StockAdjustRequest,
    StockMovementList,
    StockMovementOut,
)
from services import stock

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_item(item: InventoryItemModel, category_name: Optional[str]) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "sku": item.sku,
        "category_id": item.category_id,
        "category_name": category_name,
        "quantity": int(item.quantity),
        "unit_cost": float(item.unit_cost or 0),
        "selling_price": float(item.selling_price or 0),
        "min_stock_level": int(item.min_stock_level),
        "max_stock_level": int(item.max_stock_level),
        "supplier": item.supplier,
        "location": item.location,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


def _day_start(d: Optional[date]) -> Optional[datetime]:
    return datetime.combine(d, time.min) if d else None


def _day_end(d: Optional[date]) -> Optional[datetime]:
    return datetime.combine(d, time.max) if d else None


async def _get_item_with_category(db: AsyncSession, item_id: UUID):
    res = await db.execute(
        select(InventoryItemModel, Category.name)
        .join(Category, Category.id == InventoryItemModel.category_id)
        .where(InventoryItemModel.id == item_id)
        .execution_options(populate_existing=True)
    )
    row = res.first()
    if row is None:
        raise NotFound("Item not found")
    return row


@router.get("/", response_model=InventoryList)
async def list_inventory(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = Query(False, alias="lowStock"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    conditions = []
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        conditions.append(
            or_(func.lower(InventoryItemModel.name).like(pattern), func.lower(InventoryItemModel.sku).like(pattern))
        )
    if category:
        conditions.append(Category.name == category)
    if low_stock:
        conditions.append(InventoryItemModel.quantity <= InventoryItemModel.min_stock_level)

    base = select(InventoryItemModel, Category.name).join(Category, Category.id == InventoryItemModel.category_id)
    total = (
        await db.execute(
            select(func.count(InventoryItemModel.id))
            .join(Category, Category.id == InventoryItemModel.category_id)
            .where(*conditions)
        )
    ).scalar_one()
    res = await db.execute(
        base.where(*conditions)
        .order_by(InventoryItemModel.created_at.desc(), InventoryItemModel.name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "items": [_serialize_item(item, cat) for item, cat in res.all()],
        "pagination": Pagination.build(page, limit, int(total)),
    }


@router.post("/", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: InventoryItemCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_INVENTORY)),
    settings: Settings = Depends(get_settings),
):
    actor_id = user.id
    try:
        item = await stock.create_item(
            db,
            name=payload.name,
            category_name=payload.category,
            initial_quantity=payload.quantity,
            actor_id=actor_id,
            sku=payload.sku,
            unit_cost=payload.unit_cost,
            selling_price=payload.selling_price,
            min_stock_level=payload.min_stock_level,
            max_stock_level=payload.max_stock_level,
            supplier=payload.supplier,
            location=payload.location,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to create inventory item %s", payload.name)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create item") from e
    return _serialize_item(item, payload.category)


@router.get("/reports/low-stock", response_model=List[LowStockItem])
async def low_stock_report(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    res = await db.execute(
        select(InventoryItemModel, Category.name)
        .join(Category, Category.id == InventoryItemModel.category_id)
        .where(InventoryItemModel.quantity <= InventoryItemModel.min_stock_level)
    )
    out = []
    for item, cat in res.all():
        row = _serialize_item(item, cat)
        row["fill_ratio"] = (item.quantity / item.min_stock_level) if item.min_stock_level else 0.0
        out.append(row)
    out.sort(key=lambda r: (r["fill_ratio"], r["name"]))
    return out


@router.get("/movements", response_model=StockMovementList)
async def list_stock_movements(
    item_id: Optional[UUID] = None,
    reason: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    rows, total = await stock.list_movements(
        db,
        item_id=item_id,
        reason=reason,
        start=_day_start(start_date),
        end=_day_end(end_date),
        page=page,
        limit=limit,
    )
    return {
        "movements": [StockMovementOut.model_validate(m) for m in rows],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/{item_id}", response_model=InventoryItemDetail)
async def get_inventory_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    item, cat = await _get_item_with_category(db, item_id)
    movements, _ = await stock.list_movements(db, item_id=item_id, page=1, limit=10)
    out = _serialize_item(item, cat)
    out["recent_movements"] = [StockMovementOut.model_validate(m) for m in movements]
    return out


@router.put("/{item_id}", response_model=InventoryItemOut)
async def update_inventory_item(
    item_id: UUID,
    payload: InventoryItemUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_INVENTORY)),
):
    item, category_name = await _get_item_with_category(db, item_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name") and data["name"] != item.name:
        clash = await db.execute(
            select(InventoryItemModel.id).where(InventoryItemModel.name == data["name"], InventoryItemModel.id != item.id)
        )
        if clash.first() is not None:
            raise InvalidInput("Item with this name already exists")
        item.name = data["name"]

    if "sku" in data:
        sku = (data["sku"] or "").strip() or None
        if sku:
            clash = await db.execute(
                select(InventoryItemModel.id).where(InventoryItemModel.sku == sku, InventoryItemModel.id != item.id)
            )
            if clash.first() is not None:
                raise InvalidInput("Item with this SKU already exists")
        item.sku = sku

    if data.get("category"):
        cat = (await db.execute(select(Category).where(Category.name == data["category"]))).scalar_one_or_none()
        if cat is None:
            raise InvalidInput("Category not found")
        item.category_id = cat.id
        category_name = cat.name

    for field in ("unit_cost", "selling_price", "min_stock_level", "max_stock_level", "supplier", "location"):
        if field in data and (data[field] is not None or field in ("supplier", "location")):
            setattr(item, field, data[field])

    if item.max_stock_level < item.min_stock_level:
        raise InvalidInput("max_stock_level must be >= min_stock_level")

    try:
        await db.commit()
        await db.refresh(item)
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to update inventory item %s", item_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update item") from e
    return _serialize_item(item, category_name)


@router.post("/{item_id}/adjust", response_model=AdjustmentOut)
async def adjust_inventory_item(
    item_id: UUID,
    payload: StockAdjustRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
    settings: Settings = Depends(get_settings),
):
    if not has_permission(role_of(user), adjustment_permission(payload.quantity)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    reason = stock.ReasonTag.RESTOCK if payload.type == "restock" else stock.ReasonTag.MANUAL_ADJUSTMENT
    actor_id = user.id
    try:
        result = await stock.adjust(
            db,
            item_id,
            payload.quantity,
            reason,
            actor_id,
            payload.notes,
            idempotency_key=payload.idempotency_key,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Stock adjustment failed for item %s", item_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to adjust stock") from e

    item, cat = await _get_item_with_category(db, item_id)
    return {
        "item": _serialize_item(item, cat),
        "movement": StockMovementOut.model_validate(result.movement),
        "replayed": result.replayed,
    }


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_inventory_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.DELETE_INVENTORY)),
):
    item = (
        await db.execute(select(InventoryItemModel).where(InventoryItemModel.id == item_id))
    ).scalar_one_or_none()
    if item is None:
        raise NotFound("Item not found")

    has_history = (
        await db.execute(select(StockMovementModel.id).where(StockMovementModel.inventory_item_id == item_id).limit(1))
    ).first()
    has_sales = (
        await db.execute(select(SaleModel.id).where(SaleModel.inventory_item_id == item_id).limit(1))
    ).first()
    if has_history is not None or has_sales is not None:
        raise InvalidInput("Cannot delete an item with stock history or sales")

    await db.delete(item)
    await db.commit()
    logger.info("Item deleted: id=%s by=%s", item_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
