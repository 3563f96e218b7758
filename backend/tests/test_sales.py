from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import API, make_item
from core.errors import InsufficientStock, InvalidInput, NotFound
from db.inventory.item import InventoryItem
from db.inventory.movement import StockMovement
from db.payment_method import PaymentMethod
from db.sale import Sale
from services import sales, stock


async def _quantity(database, item_id):
    async with database.session() as s:
        return (await s.execute(select(InventoryItem.quantity).where(InventoryItem.id == item_id))).scalar_one()


async def _sale(database, sale_id):
    async with database.session() as s:
        return (await s.execute(select(Sale).where(Sale.id == sale_id))).scalar_one_or_none()


def test_generated_invoice_number_format():
    number = sales.generate_invoice_number()
    prefix, millis, suffix = number.split("-")
    assert prefix == "INV"
    assert millis.isdigit()
    assert len(suffix) == 9


def test_prorate_price():
    assert sales.prorate_price(Decimal("50.00"), 5, 3) == Decimal("30.00")
    assert sales.prorate_price(Decimal("10.00"), 3, 1) == Decimal("3.33")


async def test_record_sale_and_partial_return(database, session):
    item_id = (await make_item(session, "Widget", 15, selling_price="10.00")).id

    sale, created = await sales.record_sale(
        session, item_name="Widget", quantity=5, payment_method="Cash", actor_id=None
    )
    sale_id = sale.id
    assert created is True
    assert sale.invoice_number.startswith("INV-")
    assert sale.price == Decimal("50.00")
    assert sale.category_name == "General"
    assert await _quantity(database, item_id) == 10

    kept, new_quantity = await sales.process_return(session, sale_id=sale_id, quantity=2, actor_id=None)

    assert new_quantity == 12
    assert kept is not None
    stored = await _sale(database, sale_id)
    assert stored.quantity == 3
    assert stored.price == Decimal("30.00")

    async with database.session() as s:
        res = await s.execute(
            select(StockMovement).where(StockMovement.source_id == sale_id).order_by(StockMovement.created_at.asc())
        )
        entries = [(m.change, m.reason, m.note) for m in res.scalars().all()]
    assert entries == [(-5, "sale", f"Sale: {sale.invoice_number}"), (2, "return", "Return: Customer return")]


async def test_full_return_deletes_sale(database, session):
    item_id = (await make_item(session, "Widget", 4)).id
    sale, _ = await sales.record_sale(session, item_name="Widget", quantity=4, payment_method="Pos", actor_id=None)
    sale_id = sale.id

    kept, new_quantity = await sales.process_return(
        session, sale_id=sale_id, quantity=4, actor_id=None, reason="damaged"
    )

    assert kept is None
    assert new_quantity == 4
    assert await _sale(database, sale_id) is None
    assert await stock.ledger_total(session, item_id) == 4


async def test_return_more_than_sold_is_rejected(database, session):
    item_id = (await make_item(session, "Widget", 5)).id
    sale, _ = await sales.record_sale(session, item_name="Widget", quantity=2, payment_method="Cash", actor_id=None)
    sale_id = sale.id

    with pytest.raises(InvalidInput):
        await sales.process_return(session, sale_id=sale_id, quantity=3, actor_id=None)

    assert await _quantity(database, item_id) == 3
    assert (await _sale(database, sale_id)).quantity == 2


async def test_sale_price_override_discount_and_tax(session):
    await make_item(session, "Widget", 10, selling_price="10.00")
    sale, _ = await sales.record_sale(
        session,
        item_name="Widget",
        quantity=3,
        payment_method="Mobile Money",
        actor_id=None,
        price=Decimal("8.00"),
        discount_amount=Decimal("4.00"),
        tax_amount=Decimal("1.50"),
    )
    assert sale.unit_price == Decimal("8.00")
    assert sale.price == Decimal("21.50")


async def test_insufficient_stock_creates_no_sale(database, session):
    item_id = (await make_item(session, "Widget", 2)).id

    with pytest.raises(InsufficientStock):
        await sales.record_sale(session, item_name="Widget", quantity=3, payment_method="Cash", actor_id=None)

    async with database.session() as s:
        assert (await s.execute(select(Sale.id))).first() is None
    assert await _quantity(database, item_id) == 2


@pytest.mark.parametrize(
    "item_name, payment_method",
    [("Missing", "Cash"), ("Widget", "Cheque")],
)
async def test_unknown_item_or_payment_method(session, item_name, payment_method):
    await make_item(session, "Widget", 5)
    with pytest.raises(NotFound):
        await sales.record_sale(session, item_name=item_name, quantity=1, payment_method=payment_method, actor_id=None)


async def test_duplicate_invoice_number_is_not_sold_twice(database, session):
    item_id = (await make_item(session, "Widget", 10)).id

    first, created_first = await sales.record_sale(
        session, item_name="Widget", quantity=2, payment_method="Cash", actor_id=None, invoice_number="INV-CLIENT-1"
    )
    second, created_second = await sales.record_sale(
        session, item_name="Widget", quantity=2, payment_method="Cash", actor_id=None, invoice_number="INV-CLIENT-1"
    )

    assert created_first is True and created_second is False
    assert second.id == first.id
    assert await _quantity(database, item_id) == 8


async def test_sale_and_return_over_http(client, session, staff_headers):
    await make_item(session, "Widget", 15, selling_price="10.00")

    res = await client.post(
        f"{API}/sales/",
        json={"item_name": "Widget", "quantity": 5, "payment_method": "Cash"},
        headers=staff_headers,
    )
    assert res.status_code == 201, res.text
    sale = res.json()
    assert sale["price"] == 50.0
    assert sale["payment_method"] == "Cash"

    res = await client.post(f"{API}/sales/{sale['id']}/return", json={"quantity": 2}, headers=staff_headers)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["item_quantity"] == 12
    assert body["fully_returned"] is False
    assert body["sale"]["quantity"] == 3
    assert body["sale"]["price"] == 30.0

    res = await client.get(f"{API}/sales/", headers=staff_headers)
    assert res.json()["pagination"]["total"] == 1


async def test_http_insufficient_stock_reports_available(client, session, staff_headers):
    await make_item(session, "Widget", 1)
    res = await client.post(
        f"{API}/sales/",
        json={"item_name": "Widget", "quantity": 3, "payment_method": "Cash"},
        headers=staff_headers,
    )
    assert res.status_code == 400
    assert res.json()["error"] == "InsufficientStock"
    assert res.json()["available"] == 1


async def test_http_resubmitted_invoice_returns_existing_sale(client, session, staff_headers):
    await make_item(session, "Widget", 5)
    payload = {"item_name": "Widget", "quantity": 1, "payment_method": "Cash", "invoice_number": "INV-42"}

    first = await client.post(f"{API}/sales/", json=payload, headers=staff_headers)
    second = await client.post(f"{API}/sales/", json=payload, headers=staff_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]


async def test_auditor_cannot_record_sales(client, session, auditor_headers):
    await make_item(session, "Widget", 5)
    res = await client.post(
        f"{API}/sales/",
        json={"item_name": "Widget", "quantity": 1, "payment_method": "Cash"},
        headers=auditor_headers,
    )
    assert res.status_code == 403


async def test_sales_summary(client, session, staff_headers):
    await make_item(session, "Widget", 10, selling_price="5.00")
    await make_item(session, "Gadget", 10, category="Electronics", selling_price="20.00")
    for name, qty, method in [("Widget", 2, "Cash"), ("Widget", 1, "Pos"), ("Gadget", 1, "Cash")]:
        await sales.record_sale(session, item_name=name, quantity=qty, payment_method=method, actor_id=None)

    res = await client.get(f"{API}/sales/reports/summary", headers=staff_headers)
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["summary"]["total_sales"] == 3
    assert body["summary"]["total_revenue"] == 35.0
    assert {row["payment_method"]: row["count"] for row in body["by_payment_method"]} == {"Cash": 2, "Pos": 1}
    assert body["top_items"][0] == {"item_name": "Widget", "quantity": 3, "revenue": 15.0}
    assert sum(day["count"] for day in body["by_day"]) == 3


async def test_invoice_stored_by_a_concurrent_request_is_returned(client, database, session, staff_headers, monkeypatch):
    item_id = (await make_item(session, "Widget", 10)).id
    real_lookup = sales._get_sale_by_invoice
    stored = []

    async def lookup_losing_the_race(s, invoice_number):
        if stored:
            return await real_lookup(s, invoice_number)
        # Another request stores the same invoice between the lookup and the insert.
        async with database.session() as other:
            cash_id = (
                await other.execute(select(PaymentMethod.id).where(PaymentMethod.name == "Cash"))
            ).scalar_one()
            sale = Sale(
                invoice_number=invoice_number,
                inventory_item_id=item_id,
                item_name="Widget",
                quantity=1,
                unit_price=Decimal("10.00"),
                price=Decimal("10.00"),
                payment_method_id=cash_id,
            )
            other.add(sale)
            await other.commit()
            stored.append(str(sale.id))
        return None

    monkeypatch.setattr(sales, "_get_sale_by_invoice", lookup_losing_the_race)

    res = await client.post(
        f"{API}/sales/",
        json={"item_name": "Widget", "quantity": 2, "payment_method": "Cash", "invoice_number": "INV-RACE-1"},
        headers=staff_headers,
    )

    assert res.status_code == 200, res.text
    assert res.json()["id"] == stored[0]
    assert res.json()["quantity"] == 1
    assert await _quantity(database, item_id) == 10
    async with database.session() as s:
        sale_moves = await s.execute(select(StockMovement).where(StockMovement.reason == "sale"))
        assert sale_moves.scalars().all() == []
