import logging
from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.config import Settings, get_settings
from core.errors import StockError
from core.policy import Permission
from db.database import get_async_session
from db.outgoing import OutgoingStock as OutgoingStockModel
from db.users import User
from schemas.common import Pagination
from schemas.outgoing import OutgoingCreate, OutgoingList, OutgoingRead
from services import outgoing

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=OutgoingList)
async def list_outgoing(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    product: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    conditions = []
    if start_date:
        conditions.append(OutgoingStockModel.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        conditions.append(OutgoingStockModel.created_at <= datetime.combine(end_date, time.max))
    if product and product.strip():
        conditions.append(func.lower(OutgoingStockModel.item_name).like(f"%{product.strip().lower()}%"))

    total = (
        await db.execute(select(func.count(OutgoingStockModel.id)).where(*conditions))
    ).scalar_one()
    res = await db.execute(
        select(OutgoingStockModel)
        .where(*conditions)
        .order_by(OutgoingStockModel.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "records": [OutgoingRead.model_validate(r) for r in res.scalars().all()],
        "pagination": Pagination.build(page, limit, int(total)),
    }


@router.post("/", response_model=OutgoingRead, status_code=status.HTTP_201_CREATED)
async def create_outgoing(
    payload: OutgoingCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.RECORD_OUTGOING)),
    settings: Settings = Depends(get_settings),
):
    actor_id = user.id
    try:
        record = await outgoing.record_outgoing(
            db,
            item_name=payload.item_name,
            quantity=payload.quantity,
            actor_id=actor_id,
            branch_name=payload.branch_name,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to record outgoing stock for item %s", payload.item_name)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record outgoing stock") from e
    return OutgoingRead.model_validate(record)


@router.delete("/{outgoing_id}")
async def cancel_outgoing(
    outgoing_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.RECORD_OUTGOING)),
    settings: Settings = Depends(get_settings),
):
    actor_id = user.id
    try:
        item_quantity = await outgoing.cancel_outgoing(
            db, outgoing_id, actor_id, lock_timeout_ms=settings.lock_timeout_ms
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to cancel outgoing record %s", outgoing_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to cancel outgoing record") from e
    return {"detail": "Outgoing record cancelled", "item_quantity": item_quantity}
