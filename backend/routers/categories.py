import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.errors import InvalidInput, NotFound
from core.policy import Permission
from db.category import Category as CategoryModel
from db.database import get_async_session
from db.inventory.item import InventoryItem
from db.users import User
from schemas.categories import CategoryCreate, CategoryRead, CategoryUpdate
from services import analytics

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_category(c: CategoryModel, item_count: int = 0) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "profit_percentage": float(c.profit_percentage or 0),
        "color_code": c.color_code,
        "item_count": int(item_count or 0),
        "created_at": c.created_at,
    }


async def _get_category(db: AsyncSession, category_id: UUID) -> CategoryModel:
    res = await db.execute(select(CategoryModel).where(CategoryModel.id == category_id))
    category = res.scalar_one_or_none()
    if category is None:
        raise NotFound("Category not found")
    return category


async def _item_count(db: AsyncSession, category_id: UUID) -> int:
    res = await db.execute(select(func.count(InventoryItem.id)).where(InventoryItem.category_id == category_id))
    return int(res.scalar_one())


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id=None) -> None:
    q = select(CategoryModel.id).where(func.lower(CategoryModel.name) == name.lower())
    if exclude_id is not None:
        q = q.where(CategoryModel.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise InvalidInput("Category with this name already exists")


@router.get("/", response_model=List[CategoryRead])
async def list_categories(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    counts = (
        select(InventoryItem.category_id, func.count(InventoryItem.id).label("item_count"))
        .group_by(InventoryItem.category_id)
        .subquery()
    )
    res = await db.execute(
        select(CategoryModel, counts.c.item_count)
        .outerjoin(counts, counts.c.category_id == CategoryModel.id)
        .order_by(CategoryModel.name.asc())
    )
    return [_serialize_category(c, n) for c, n in res.all()]


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    category = await _get_category(db, category_id)
    return _serialize_category(category, await _item_count(db, category.id))


@router.get("/{category_id}/performance")
async def category_performance(
    category_id: UUID,
    time_range: str = Query("30d", alias="timeRange"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_SALES)),
):
    category = await _get_category(db, category_id)
    start, _ = analytics.resolve_range(time_range)
    return await analytics.category_performance(db, category, start)


@router.post("/", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_CATEGORIES)),
):
    name = payload.name.strip()
    await _ensure_unique_name(db, name)
    category = CategoryModel(
        name=name,
        description=payload.description,
        profit_percentage=payload.profit_percentage,
        color_code=payload.color_code,
    )
    db.add(category)
    await db.commit()
    await db.refresh(category)
    logger.info("Category created: %s", name)
    return _serialize_category(category)


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: UUID,
    payload: CategoryUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_CATEGORIES)),
):
    category = await _get_category(db, category_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name"):
        name = data["name"].strip()
        await _ensure_unique_name(db, name, exclude_id=category.id)
        category.name = name
    if "description" in data:
        category.description = data["description"]
    if data.get("profit_percentage") is not None:
        category.profit_percentage = data["profit_percentage"]
    if data.get("color_code"):
        category.color_code = data["color_code"]

    await db.commit()
    await db.refresh(category)
    return _serialize_category(category, await _item_count(db, category.id))


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.MANAGE_CATEGORIES)),
):
    category = await _get_category(db, category_id)
    if await _item_count(db, category.id):
        raise InvalidInput("Cannot delete a category that still has items")

    await db.delete(category)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
