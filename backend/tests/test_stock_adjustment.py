import asyncio
import sqlite3
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError

from conftest import hold_write_lock, make_item
from core.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from db.inventory.item import InventoryItem
from db.inventory.movement import StockMovement
from services import stock
from services.stock import ReasonTag


async def _quantity(database, item_id):
    async with database.session() as s:
        return (await s.execute(select(InventoryItem.quantity).where(InventoryItem.id == item_id))).scalar_one()


async def _movements(database, item_id):
    async with database.session() as s:
        res = await s.execute(
            select(StockMovement)
            .where(StockMovement.inventory_item_id == item_id)
            .order_by(StockMovement.created_at.asc())
        )
        return list(res.scalars().all())


async def test_create_item_books_initial_stock(database, session):
    item_id = (await make_item(session, "Widget", 10)).id

    movements = await _movements(database, item_id)
    assert [(m.change, m.reason, m.quantity_after) for m in movements] == [(10, "initial_stock", 10)]
    assert await _quantity(database, item_id) == 10


async def test_create_item_with_zero_quantity_has_no_ledger_entry(database, session):
    item_id = (await make_item(session, "Empty", 0)).id
    assert await _movements(database, item_id) == []
    assert await _quantity(database, item_id) == 0


async def test_restock_adds_quantity_and_one_ledger_entry(database, session):
    item_id = (await make_item(session, "Widget", 10)).id

    result = await stock.adjust(session, "Widget", 5, ReasonTag.RESTOCK, None, "delivery")

    assert result.new_quantity == 15
    assert result.movement.change == 5
    assert result.movement.reason == "restock"
    assert result.movement.note == "delivery"
    assert await _quantity(database, item_id) == 15
    assert [m.change for m in await _movements(database, item_id)] == [10, 5]


async def test_insufficient_stock_leaves_quantity_and_ledger_untouched(database, session):
    item_id = (await make_item(session, "Widget", 15)).id

    with pytest.raises(InsufficientStock) as exc_info:
        await stock.adjust(session, item_id, -20, ReasonTag.SALE, None)

    assert exc_info.value.available == 15
    assert await _quantity(database, item_id) == 15
    assert len(await _movements(database, item_id)) == 1


async def test_sale_adjustment_decrements(database, session):
    item_id = (await make_item(session, "Widget", 15)).id

    result = await stock.adjust(session, item_id, -5, "sale", None)

    assert result.new_quantity == 10
    movements = await _movements(database, item_id)
    assert (movements[-1].change, movements[-1].reason) == (-5, "sale")


async def test_adjust_to_exactly_zero_is_allowed(database, session):
    item_id = (await make_item(session, "Widget", 3)).id
    result = await stock.adjust(session, item_id, -3, ReasonTag.MANUAL_ADJUSTMENT, None)
    assert result.new_quantity == 0


async def test_ledger_sum_matches_quantity_after_mixed_operations(database, session):
    item_id = (await make_item(session, "Widget", 7)).id

    for delta, reason in [(4, "restock"), (-2, "sale"), (1, "return"), (-9, "manual_adjustment")]:
        await stock.adjust(session, item_id, delta, reason, None)
    with pytest.raises(InsufficientStock):
        await stock.adjust(session, item_id, -5, "sale", None)

    assert await _quantity(database, item_id) == 1
    assert await stock.ledger_total(session, item_id) == 1
    last = (await _movements(database, item_id))[-1]
    assert last.quantity_after == 1


@pytest.mark.parametrize(
    "delta, reason",
    [
        (0, "restock"),
        (5, "sale"),
        (-5, "restock"),
        (-1, "return"),
        (3, "outgoing"),
        (1, "shrinkage"),
    ],
)
async def test_invalid_inputs_are_rejected(database, session, delta, reason):
    item_id = (await make_item(session, "Widget", 10)).id

    with pytest.raises(InvalidInput):
        await stock.adjust(session, item_id, delta, reason, None)

    assert await _quantity(database, item_id) == 10
    assert len(await _movements(database, item_id)) == 1


async def test_unknown_item_is_not_found(session):
    with pytest.raises(NotFound):
        await stock.adjust(session, uuid.uuid4(), 1, "restock", None)
    with pytest.raises(NotFound):
        await stock.adjust(session, "No such item", 1, "restock", None)


async def test_reason_parsing_accepts_hyphens_and_case():
    assert stock.parse_reason("Initial-Stock") is ReasonTag.INITIAL_STOCK
    assert stock.parse_reason(ReasonTag.SALE) is ReasonTag.SALE


async def test_idempotency_key_reused_for_another_item_is_refused(database, session):
    item_id = (await make_item(session, "Widget", 10)).id
    await stock.adjust(session, item_id, 1, "restock", None, idempotency_key="dup-key")

    other_id = (await make_item(session, "Gadget", 10)).id
    # Same key on a different item is refused before anything is written.
    with pytest.raises(InvalidInput):
        await stock.adjust(session, other_id, 1, "restock", None, idempotency_key="dup-key")

    assert await _quantity(database, other_id) == 10
    assert len(await _movements(database, other_id)) == 1


async def test_idempotency_key_replays_instead_of_reapplying(database, session):
    item_id = (await make_item(session, "Widget", 10)).id

    first = await stock.adjust(session, item_id, -4, "manual_adjustment", None, idempotency_key="req-1")
    second = await stock.adjust(session, item_id, -4, "manual_adjustment", None, idempotency_key="req-1")

    assert first.replayed is False
    assert second.replayed is True
    assert second.new_quantity == 6
    assert second.movement.id == first.movement.id
    assert await _quantity(database, item_id) == 6
    assert len(await _movements(database, item_id)) == 2


async def test_plain_retry_without_key_applies_twice(database, session):
    item_id = (await make_item(session, "Widget", 10)).id
    await stock.adjust(session, item_id, -1, "sale", None)
    await stock.adjust(session, item_id, -1, "sale", None)
    assert await _quantity(database, item_id) == 8


async def test_concurrent_decrements_never_oversell(database, session):
    item_id = (await make_item(session, "Widget", 6)).id

    async def sell():
        async with database.session() as s:
            return await stock.adjust(s, item_id, -5, ReasonTag.SALE, None)

    results = await asyncio.gather(sell(), sell(), return_exceptions=True)

    successes = [r for r in results if isinstance(r, stock.AdjustmentResult)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientStock, Conflict))
    assert successes[0].new_quantity == 1
    assert await _quantity(database, item_id) == 1
    assert await stock.ledger_total(session, item_id) == 1


async def test_list_movements_filters_and_paginates(session):
    item_id = (await make_item(session, "Widget", 10)).id
    other_id = (await make_item(session, "Gadget", 5)).id
    for _ in range(3):
        await stock.adjust(session, item_id, 1, "restock", None)
    await stock.adjust(session, other_id, -1, "sale", None)

    rows, total = await stock.list_movements(session, item_id=item_id)
    assert total == 4
    assert all(r.inventory_item_id == item_id for r in rows)

    rows, total = await stock.list_movements(session, reason="sale")
    assert total == 1 and rows[0].inventory_item_id == other_id

    rows, total = await stock.list_movements(session, page=2, limit=4)
    assert total == 6
    assert len(rows) == 2


async def test_duplicate_item_name_and_unknown_category(session):
    await make_item(session, "Widget", 1)
    with pytest.raises(InvalidInput):
        await make_item(session, "Widget", 1)
    with pytest.raises(InvalidInput):
        await make_item(session, "Other", 1, category="Nope")

    count = (await session.execute(select(func.count(InventoryItem.id)))).scalar_one()
    assert count == 1


async def test_idempotency_key_reused_with_a_different_change_is_refused(database, session):
    item_id = (await make_item(session, "Widget", 10)).id
    await stock.adjust(session, item_id, -4, "manual_adjustment", None, idempotency_key="req-7")

    with pytest.raises(InvalidInput):
        await stock.adjust(session, item_id, -3, "manual_adjustment", None, idempotency_key="req-7")
    with pytest.raises(InvalidInput):
        await stock.adjust(session, item_id, 4, "restock", None, idempotency_key="req-7")

    assert await _quantity(database, item_id) == 6
    assert len(await _movements(database, item_id)) == 2


class _DriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"driver error {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "sqlstate, conflict",
    [("55P03", True), ("40001", True), ("40P01", True), ("23505", False)],
)
def test_conflict_sqlstates(sqlstate, conflict):
    exc = DBAPIError("UPDATE inventory_items", {}, _DriverError(sqlstate))
    assert stock.is_conflict_error(exc) is conflict


def test_locked_sqlite_database_is_a_conflict():
    exc = OperationalError("UPDATE inventory_items", {}, sqlite3.OperationalError("database is locked"))
    assert stock.is_conflict_error(exc) is True


async def test_lock_timeout_raises_conflict_and_changes_nothing(database, session):
    item_id = (await make_item(session, "Widget", 5)).id

    with hold_write_lock(database):
        with pytest.raises(Conflict):
            await stock.adjust(session, item_id, -2, ReasonTag.MANUAL_ADJUSTMENT, None, lock_timeout_ms=100)

    assert await _quantity(database, item_id) == 5
    assert len(await _movements(database, item_id)) == 1

    # The same session is usable once the other writer is gone.
    result = await stock.adjust(session, item_id, -2, ReasonTag.MANUAL_ADJUSTMENT, None, lock_timeout_ms=100)
    assert result.new_quantity == 3
