from datetime import date, datetime, time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.policy import Permission
from db.database import get_async_session
from db.remark import Remark as RemarkModel
from db.users import User
from schemas.remarks import RemarkCreate, RemarkRead

router = APIRouter()


@router.get("/", response_model=List[RemarkRead])
async def list_remarks(
    day: Optional[date] = Query(None, alias="date"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_INVENTORY)),
):
    q = select(RemarkModel, User.name).outerjoin(User, User.id == RemarkModel.created_by_user_id)
    if day:
        q = q.where(
            RemarkModel.created_at >= datetime.combine(day, time.min),
            RemarkModel.created_at <= datetime.combine(day, time.max),
        )
    res = await db.execute(q.order_by(RemarkModel.created_at.desc()).limit(limit))
    return [
        RemarkRead(
            id=r.id,
            message=r.message,
            created_by_user_id=r.created_by_user_id,
            created_by_name=name,
            created_at=r.created_at,
        )
        for r, name in res.all()
    ]


@router.post("/", response_model=RemarkRead, status_code=status.HTTP_201_CREATED)
async def create_remark(
    payload: RemarkCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.POST_REMARKS)),
):
    remark = RemarkModel(message=payload.message, created_by_user_id=user.id)
    db.add(remark)
    await db.commit()
    await db.refresh(remark)
    return RemarkRead(
        id=remark.id,
        message=remark.message,
        created_by_user_id=remark.created_by_user_id,
        created_by_name=user.name,
        created_at=remark.created_at,
    )
