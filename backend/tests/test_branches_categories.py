import uuid

from conftest import API, make_item
from services import sales


async def test_branch_crud(client, staff_headers, manager_headers):
    res = await client.post(f"{API}/branches/", json={"name": "Harbour"}, headers=staff_headers)
    assert res.status_code == 403

    res = await client.post(
        f"{API}/branches/", json={"name": "Harbour", "address": "1 Quay St"}, headers=manager_headers
    )
    assert res.status_code == 201, res.text
    branch = res.json()

    res = await client.post(f"{API}/branches/", json={"name": "harbour"}, headers=manager_headers)
    assert res.status_code == 400

    res = await client.post(f"{API}/branches/", json={"name": "A" * 17}, headers=manager_headers)
    assert res.status_code == 422

    res = await client.put(f"{API}/branches/{branch['id']}", json={"phone": "555-0100"}, headers=manager_headers)
    assert res.json()["phone"] == "555-0100"

    res = await client.get(f"{API}/branches/", headers=staff_headers)
    assert sorted(b["name"] for b in res.json()) == ["Harbour", "Main"]

    res = await client.delete(f"{API}/branches/{branch['id']}", headers=manager_headers)
    assert res.status_code == 204


async def test_branch_with_sales_cannot_be_deleted(client, session, manager_headers):
    res = await client.get(f"{API}/branches/", headers=manager_headers)
    main_id = res.json()[0]["id"]
    await make_item(session, "Widget", 5)
    await sales.record_sale(
        session, item_name="Widget", quantity=1, payment_method="Cash", actor_id=None, branch_id=uuid.UUID(main_id)
    )

    res = await client.delete(f"{API}/branches/{main_id}", headers=manager_headers)
    assert res.status_code == 400


async def test_category_crud_and_guarded_delete(client, session, manager_headers, staff_headers):
    res = await client.post(
        f"{API}/categories/",
        json={"name": "Tools", "profit_percentage": 12.5, "color_code": "#112233"},
        headers=manager_headers,
    )
    assert res.status_code == 201, res.text
    category = res.json()
    assert category["item_count"] == 0

    res = await client.post(f"{API}/categories/", json={"name": "Bad", "color_code": "blue"}, headers=manager_headers)
    assert res.status_code == 422

    await make_item(session, "Hammer", 3, category="Tools")

    res = await client.get(f"{API}/categories/", headers=staff_headers)
    counts = {c["name"]: c["item_count"] for c in res.json()}
    assert counts["Tools"] == 1
    assert counts["General"] == 0

    res = await client.delete(f"{API}/categories/{category['id']}", headers=manager_headers)
    assert res.status_code == 400

    res = await client.put(
        f"{API}/categories/{category['id']}", json={"description": "Hand tools"}, headers=manager_headers
    )
    assert res.json()["description"] == "Hand tools"


async def test_category_performance(client, session, manager_headers):
    await make_item(session, "Hammer", 10, category="Accessories", selling_price="7.00")
    await sales.record_sale(session, item_name="Hammer", quantity=3, payment_method="Cash", actor_id=None)

    res = await client.get(f"{API}/categories/", headers=manager_headers)
    accessories = next(c for c in res.json() if c["name"] == "Accessories")

    res = await client.get(
        f"{API}/categories/{accessories['id']}/performance", params={"timeRange": "7d"}, headers=manager_headers
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["summary"] == {"total_sales": 1, "total_quantity": 3, "total_revenue": 21.0}
    assert body["top_items"][0]["item_name"] == "Hammer"
    assert len(body["daily_trend"]) == 1


async def test_payment_methods_and_remarks(client, staff_headers, auditor_headers):
    res = await client.get(f"{API}/payment-methods/", headers=staff_headers)
    assert [pm["name"] for pm in res.json()] == ["Cash", "Mobile Money", "Pos"]

    res = await client.post(f"{API}/remarks/", json={"message": "  Fridge 2 is leaking  "}, headers=staff_headers)
    assert res.status_code == 201
    assert res.json()["message"] == "Fridge 2 is leaking"
    assert res.json()["created_by_name"] == "staff"

    res = await client.post(f"{API}/remarks/", json={"message": "hello"}, headers=auditor_headers)
    assert res.status_code == 403

    res = await client.get(f"{API}/remarks/", headers=auditor_headers)
    assert [r["message"] for r in res.json()] == ["Fridge 2 is leaking"]


async def test_reference_reads_need_a_signed_in_user(client, auditor_headers):
    for path in ("/categories/", "/branches/", "/payment-methods/", "/remarks/"):
        res = await client.get(f"{API}{path}")
        assert res.status_code == 401
        res = await client.get(f"{API}{path}", headers=auditor_headers)
        assert res.status_code == 200, path
