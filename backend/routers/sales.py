import logging
from datetime import date, datetime, time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import require_permission
from core.config import Settings, get_settings
from core.errors import NotFound, StockError
from core.policy import Permission
from db.database import get_async_session
from db.payment_method import PaymentMethod
from db.sale import Sale as SaleModel
from db.users import User
from schemas.common import Pagination
from schemas.sales import SaleCreate, SaleList, SaleRead, SaleReturnRequest, SaleReturnResult
from services import analytics, sales

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_sale(sale: SaleModel, payment_method: Optional[str]) -> dict:
    return {
        "id": sale.id,
        "invoice_number": sale.invoice_number,
        "inventory_item_id": sale.inventory_item_id,
        "item_name": sale.item_name,
        "category_name": sale.category_name,
        "quantity": int(sale.quantity),
        "unit_price": float(sale.unit_price or 0),
        "price": float(sale.price or 0),
        "discount_amount": float(sale.discount_amount or 0),
        "tax_amount": float(sale.tax_amount or 0),
        "payment_method_id": sale.payment_method_id,
        "payment_method": payment_method,
        "customer_name": sale.customer_name,
        "customer_phone": sale.customer_phone,
        "branch_id": sale.branch_id,
        "user_id": sale.user_id,
        "created_at": sale.created_at,
    }


async def _payment_method_name(db: AsyncSession, payment_method_id: UUID) -> Optional[str]:
    res = await db.execute(select(PaymentMethod.name).where(PaymentMethod.id == payment_method_id))
    return res.scalar_one_or_none()


@router.get("/", response_model=SaleList)
async def list_sales(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_SALES)),
):
    conditions = []
    if start_date:
        conditions.append(SaleModel.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        conditions.append(SaleModel.created_at <= datetime.combine(end_date, time.max))
    if payment_method:
        conditions.append(PaymentMethod.name == payment_method)
    if user_id:
        conditions.append(SaleModel.user_id == user_id)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        conditions.append(func.lower(SaleModel.item_name).like(pattern))

    total = (
        await db.execute(
            select(func.count(SaleModel.id))
            .join(PaymentMethod, PaymentMethod.id == SaleModel.payment_method_id)
            .where(*conditions)
        )
    ).scalar_one()
    res = await db.execute(
        select(SaleModel, PaymentMethod.name)
        .join(PaymentMethod, PaymentMethod.id == SaleModel.payment_method_id)
        .where(*conditions)
        .order_by(SaleModel.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "sales": [_serialize_sale(s, pm) for s, pm in res.all()],
        "pagination": Pagination.build(page, limit, int(total)),
    }


@router.get("/reports/summary")
async def sales_summary(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_SALES)),
):
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date, time.max) if end_date else None
    return await analytics.sales_summary(db, start, end)


@router.get("/{sale_id}", response_model=SaleRead)
async def get_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.VIEW_SALES)),
):
    res = await db.execute(
        select(SaleModel, PaymentMethod.name)
        .join(PaymentMethod, PaymentMethod.id == SaleModel.payment_method_id)
        .where(SaleModel.id == sale_id)
    )
    row = res.first()
    if row is None:
        raise NotFound("Sale not found")
    return _serialize_sale(*row)


@router.post("/", response_model=SaleRead, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreate,
    response: Response,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.RECORD_SALES)),
    settings: Settings = Depends(get_settings),
):
    actor_id = user.id
    try:
        sale, created = await sales.record_sale(
            db,
            item_name=payload.item_name,
            quantity=payload.quantity,
            payment_method=payload.payment_method,
            actor_id=actor_id,
            price=payload.price,
            discount_amount=payload.discount_amount,
            tax_amount=payload.tax_amount,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            branch_id=payload.branch_id,
            invoice_number=payload.invoice_number,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to record sale for item %s", payload.item_name)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record sale") from e

    if not created:
        response.status_code = status.HTTP_200_OK
    return _serialize_sale(sale, await _payment_method_name(db, sale.payment_method_id))


@router.post("/{sale_id}/return", response_model=SaleReturnResult)
async def return_sale(
    sale_id: UUID,
    payload: SaleReturnRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission(Permission.RECORD_SALES)),
    settings: Settings = Depends(get_settings),
):
    actor_id = user.id
    try:
        sale, item_quantity = await sales.process_return(
            db,
            sale_id=sale_id,
            quantity=payload.quantity,
            actor_id=actor_id,
            reason=payload.reason,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
    except (HTTPException, StockError):
        raise
    except Exception as e:
        await db.rollback()
        logger.exception("Failed to process return for sale %s", sale_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process return") from e

    out = {
        "returned_quantity": payload.quantity,
        "fully_returned": sale is None,
        "item_quantity": item_quantity,
        "sale": None,
    }
    if sale is not None:
        out["sale"] = _serialize_sale(sale, await _payment_method_name(db, sale.payment_method_id))
    return out
