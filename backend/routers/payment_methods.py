from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.policy import Permission
from db.database import get_async_session
from db.payment_method import PaymentMethod as PaymentMethodModel
from db.users import User
from schemas.payment_methods import PaymentMethodRead

router = APIRouter()


@router.get("/", response_model=List[PaymentMethodRead])
async def list_payment_methods(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_SALES)),
):
    res = await db.execute(select(PaymentMethodModel).order_by(PaymentMethodModel.name.asc()))
    return [PaymentMethodRead(**pm.to_schema) for pm in res.scalars().all()]
