"""
Read-only reporting over sales and inventory.

Aggregations that need date parts (month, day, hour, weekday) are bucketed in
Python over the selected rows so the same code runs on PostgreSQL and SQLite.
"""
from __future__ import annotations

import calendar
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidInput
from db.category import Category
from db.database import utcnow
from db.inventory.item import InventoryItem
from db.payment_method import PaymentMethod
from db.sale import Sale

TIME_RANGES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}
CURRENT_WEEK = "currentWeek"
DEFAULT_TIME_RANGE = "30d"


def _money(value) -> float:
    if value is None:
        return 0.0
    return float(Decimal(value).quantize(Decimal("0.01")))


def _parse_day(value, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidInput(f"{field} must be an ISO date (YYYY-MM-DD)")


def start_of_week(now: datetime) -> datetime:
    monday = now.date() - timedelta(days=now.weekday())
    return datetime.combine(monday, time.min)


def resolve_range(
    time_range: Optional[str] = None,
    start_date=None,
    end_date=None,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Turn the dashboard filters into a [start, end] pair of naive UTC datetimes.

    Explicit dates win over `time_range`; the end date covers its whole day and
    an inverted pair is swapped.
    """
    now = now or utcnow()
    time_range = time_range or DEFAULT_TIME_RANGE
    if time_range != CURRENT_WEEK and time_range not in TIME_RANGES:
        raise InvalidInput(f"Unknown time range: {time_range}")

    end_day = _parse_day(end_date, "endDate")
    start_day = _parse_day(start_date, "startDate")

    end = datetime.combine(end_day, time.max) if end_day else now
    if start_day:
        start = datetime.combine(start_day, time.min)
    elif time_range == CURRENT_WEEK:
        start = start_of_week(now)
    else:
        start = end - TIME_RANGES[time_range]

    if start > end:
        start, end = datetime.combine(end.date(), time.min), datetime.combine(start.date(), time.max)
    return start, end


def _bucket(rows: Iterable, key) -> "OrderedDict[object, Dict[str, object]]":
    out: "OrderedDict[object, Dict[str, object]]" = OrderedDict()
    for row in rows:
        k = key(row)
        slot = out.setdefault(k, {"revenue": Decimal("0"), "sales_count": 0, "quantity": 0})
        slot["revenue"] += Decimal(row.price or 0)
        slot["sales_count"] += 1
        slot["quantity"] += int(row.quantity or 0)
    return out


def _sunday_first_day_number(d: datetime) -> int:
    # 1 = Sunday ... 7 = Saturday
    return (d.weekday() + 1) % 7 + 1


async def _sale_rows(session: AsyncSession, start: datetime, end: datetime, *conditions):
    res = await session.execute(
        select(Sale.created_at, Sale.price, Sale.quantity)
        .where(Sale.created_at >= start, Sale.created_at <= end, *conditions)
        .order_by(Sale.created_at.asc())
    )
    return res.all()


async def _by_payment_method(session: AsyncSession, start: datetime, end: datetime) -> List[dict]:
    res = await session.execute(
        select(PaymentMethod.name, func.count(Sale.id), func.coalesce(func.sum(Sale.price), 0))
        .join(PaymentMethod, PaymentMethod.id == Sale.payment_method_id)
        .where(Sale.created_at >= start, Sale.created_at <= end)
        .group_by(PaymentMethod.name)
        .order_by(func.sum(Sale.price).desc())
    )
    return [
        {"payment_method": name, "count": int(count), "revenue": _money(revenue)}
        for name, count, revenue in res.all()
    ]


async def dashboard(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    low_stock_threshold: int = 3,
) -> dict:
    in_range = (Sale.created_at >= start, Sale.created_at <= end)

    total_sales, total_revenue = (
        await session.execute(select(func.count(Sale.id), func.coalesce(func.sum(Sale.price), 0)).where(*in_range))
    ).one()
    total_items = (await session.execute(select(func.count(InventoryItem.id)))).scalar_one()
    low_stock_items = (
        await session.execute(
            select(func.count(InventoryItem.id)).where(InventoryItem.quantity < low_stock_threshold)
        )
    ).scalar_one()

    rows = await _sale_rows(session, start, end)
    revenue_by_month = [
        {"month": month, "revenue": _money(v["revenue"]), "sales_count": v["sales_count"]}
        for month, v in _bucket(rows, lambda r: r.created_at.strftime("%Y-%m")).items()
    ]

    top = await session.execute(
        select(
            Sale.category_name,
            func.sum(Sale.quantity).label("total_quantity"),
            func.coalesce(func.sum(Sale.price), 0),
            func.count(Sale.id),
        )
        .where(*in_range)
        .group_by(Sale.category_name)
        .order_by(func.sum(Sale.quantity).desc())
        .limit(5)
    )
    top_categories = [
        {
            "category": category,
            "total_quantity": int(qty or 0),
            "total_revenue": _money(revenue),
            "sales_count": int(count),
        }
        for category, qty, revenue, count in top.all()
    ]

    recent = await session.execute(
        select(Sale, PaymentMethod.name)
        .join(PaymentMethod, PaymentMethod.id == Sale.payment_method_id)
        .where(*in_range)
        .order_by(Sale.created_at.desc())
        .limit(10)
    )
    recent_sales = [
        {
            "id": sale.id,
            "invoice_number": sale.invoice_number,
            "item_name": sale.item_name,
            "quantity": int(sale.quantity),
            "price": _money(sale.price),
            "payment_method": pm_name,
            "created_at": sale.created_at,
        }
        for sale, pm_name in recent.all()
    ]

    return {
        "summary": {
            "total_revenue": _money(total_revenue),
            "total_sales": int(total_sales),
            "total_items": int(total_items),
            "low_stock_items": int(low_stock_items),
        },
        "revenue_by_month": revenue_by_month,
        "sales_by_payment_method": await _by_payment_method(session, start, end),
        "top_categories": top_categories,
        "recent_sales": recent_sales,
        "start_date": start,
        "end_date": end,
    }


async def inventory_analytics(session: AsyncSession, low_stock_threshold: int = 3) -> dict:
    out_of_stock = (
        await session.execute(select(func.count(InventoryItem.id)).where(InventoryItem.quantity == 0))
    ).scalar_one()
    low = (
        await session.execute(
            select(func.count(InventoryItem.id)).where(
                InventoryItem.quantity > 0, InventoryItem.quantity < low_stock_threshold
            )
        )
    ).scalar_one()
    normal = (
        await session.execute(
            select(func.count(InventoryItem.id)).where(InventoryItem.quantity >= low_stock_threshold)
        )
    ).scalar_one()

    res = await session.execute(
        select(Category.name, func.count(InventoryItem.id), func.coalesce(func.sum(InventoryItem.quantity), 0))
        .join(InventoryItem, InventoryItem.category_id == Category.id)
        .group_by(Category.name)
        .order_by(Category.name.asc())
    )
    return {
        "stock_levels": {
            "out_of_stock": int(out_of_stock),
            "low_stock": int(low),
            "normal_stock": int(normal),
        },
        "category_distribution": [
            {"category": name, "item_count": int(count), "total_quantity": int(qty)}
            for name, count, qty in res.all()
        ],
    }


def weekday_breakdown(rows, current_week: bool) -> List[dict]:
    """
    Sales per weekday. For the current week the result is Monday-first with
    every day present (zero-filled) and day_number 0..6; otherwise only the
    days that had sales, ordered Sunday-first with day_number 1..7.
    """
    if current_week:
        buckets = _bucket(rows, lambda r: r.created_at.weekday())
        out = []
        for idx in range(7):
            v = buckets.get(idx, {"revenue": Decimal("0"), "sales_count": 0})
            out.append({
                "day_name": calendar.day_name[idx],
                "day_number": idx,
                "sales_count": v["sales_count"],
                "revenue": _money(v["revenue"]),
            })
        return out

    buckets = _bucket(rows, lambda r: _sunday_first_day_number(r.created_at))
    out = []
    for number in sorted(buckets):
        v = buckets[number]
        out.append({
            "day_name": calendar.day_name[(number + 5) % 7],
            "day_number": number,
            "sales_count": v["sales_count"],
            "revenue": _money(v["revenue"]),
        })
    return out


async def sales_analytics(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    current_week: bool = False,
) -> dict:
    rows = await _sale_rows(session, start, end)

    trends = [
        {"date": day.isoformat(), "sales_count": v["sales_count"], "revenue": _money(v["revenue"])}
        for day, v in _bucket(rows, lambda r: r.created_at.date()).items()
    ]
    by_hour = _bucket(rows, lambda r: r.created_at.hour)
    hourly = [
        {"hour": hour, "sales_count": by_hour[hour]["sales_count"], "revenue": _money(by_hour[hour]["revenue"])}
        for hour in sorted(by_hour)
    ]

    return {
        "sales_trends": trends,
        "hourly_sales": hourly,
        "weekly_sales": weekday_breakdown(rows, current_week),
        "payment_method_breakdown": await _by_payment_method(session, start, end),
        "start_date": start,
        "end_date": end,
    }


async def sales_summary(session: AsyncSession, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    conditions = []
    if start is not None:
        conditions.append(Sale.created_at >= start)
    if end is not None:
        conditions.append(Sale.created_at <= end)

    total_sales, total_revenue = (
        await session.execute(select(func.count(Sale.id), func.coalesce(func.sum(Sale.price), 0)).where(*conditions))
    ).one()
    total_sales = int(total_sales)
    average = Decimal(total_revenue) / total_sales if total_sales else Decimal("0")

    pm = await session.execute(
        select(PaymentMethod.name, func.count(Sale.id), func.coalesce(func.sum(Sale.price), 0))
        .join(PaymentMethod, PaymentMethod.id == Sale.payment_method_id)
        .where(*conditions)
        .group_by(PaymentMethod.name)
    )
    by_category = await session.execute(
        select(Sale.category_name, func.count(Sale.id), func.sum(Sale.quantity), func.coalesce(func.sum(Sale.price), 0))
        .where(*conditions)
        .group_by(Sale.category_name)
        .order_by(func.sum(Sale.price).desc())
    )
    top_items = await session.execute(
        select(Sale.item_name, func.sum(Sale.quantity), func.coalesce(func.sum(Sale.price), 0))
        .where(*conditions)
        .group_by(Sale.item_name)
        .order_by(func.sum(Sale.quantity).desc())
        .limit(10)
    )
    rows = (
        await session.execute(
            select(Sale.created_at, Sale.price, Sale.quantity).where(*conditions).order_by(Sale.created_at.asc())
        )
    ).all()

    return {
        "summary": {
            "total_sales": total_sales,
            "total_revenue": _money(total_revenue),
            "average_sale": _money(average),
        },
        "by_payment_method": [
            {"payment_method": name, "count": int(count), "revenue": _money(revenue)}
            for name, count, revenue in pm.all()
        ],
        "by_category": [
            {"category": name, "count": int(count), "quantity": int(qty or 0), "revenue": _money(revenue)}
            for name, count, qty, revenue in by_category.all()
        ],
        "top_items": [
            {"item_name": name, "quantity": int(qty or 0), "revenue": _money(revenue)}
            for name, qty, revenue in top_items.all()
        ],
        "by_day": [
            {
                "date": day.isoformat(),
                "count": v["sales_count"],
                "quantity": v["quantity"],
                "revenue": _money(v["revenue"]),
            }
            for day, v in _bucket(rows, lambda r: r.created_at.date()).items()
        ],
    }


async def category_performance(session: AsyncSession, category: Category, start: datetime) -> dict:
    in_category = (Sale.category_name == category.name, Sale.created_at >= start)

    count, qty, revenue = (
        await session.execute(
            select(func.count(Sale.id), func.sum(Sale.quantity), func.coalesce(func.sum(Sale.price), 0))
            .where(*in_category)
        )
    ).one()
    top_items = await session.execute(
        select(Sale.item_name, func.sum(Sale.quantity), func.coalesce(func.sum(Sale.price), 0))
        .where(*in_category)
        .group_by(Sale.item_name)
        .order_by(func.sum(Sale.quantity).desc())
        .limit(5)
    )
    rows = (
        await session.execute(
            select(Sale.created_at, Sale.price, Sale.quantity).where(*in_category).order_by(Sale.created_at.asc())
        )
    ).all()

    return {
        "category": {"id": category.id, "name": category.name},
        "summary": {
            "total_sales": int(count),
            "total_quantity": int(qty or 0),
            "total_revenue": _money(revenue),
        },
        "top_items": [
            {"item_name": name, "quantity": int(q or 0), "revenue": _money(r)}
            for name, q, r in top_items.all()
        ],
        "daily_trend": [
            {"date": day.isoformat(), "sales_count": v["sales_count"], "revenue": _money(v["revenue"])}
            for day, v in _bucket(rows, lambda r: r.created_at.date()).items()
        ],
    }
