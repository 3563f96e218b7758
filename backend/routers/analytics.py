from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.config import Settings, get_settings
from core.policy import Permission
from db.database import get_async_session
from db.users import User
from services import analytics

router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    time_range: str = Query(analytics.DEFAULT_TIME_RANGE, alias="timeRange"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_ANALYTICS)),
    settings: Settings = Depends(get_settings),
):
    start, end = analytics.resolve_range(time_range, start_date, end_date)
    return await analytics.dashboard(db, start, end, low_stock_threshold=settings.low_stock_threshold)


@router.get("/inventory")
async def inventory_analytics(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_ANALYTICS)),
    settings: Settings = Depends(get_settings),
):
    return await analytics.inventory_analytics(db, low_stock_threshold=settings.low_stock_threshold)


@router.get("/sales")
async def sales_analytics(
    time_range: str = Query(analytics.DEFAULT_TIME_RANGE, alias="timeRange"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_ANALYTICS)),
):
    start, end = analytics.resolve_range(time_range, start_date, end_date)
    current_week = time_range == analytics.CURRENT_WEEK and not start_date
    return await analytics.sales_analytics(db, start, end, current_week=current_week)
