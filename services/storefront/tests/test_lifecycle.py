from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app import commands, inventory, queries
from app.exceptions import NotFoundError, PersistenceError, ValidationError
from app.models import OrderStatus


async def place(session, redis, *lines):
    return await commands.place_order(
        session,
        redis,
        uuid4(),
        [{"productId": str(p.id), "quantity": q} for p, q in lines],
    )


@pytest.mark.asyncio
async def test_set_order_status(session, redis, make_product):
    product = await make_product(stock=5)
    order = await place(session, redis, (product, 1))

    updated = await commands.set_order_status(session, redis, order.id, "shipped")

    assert updated.status is OrderStatus.SHIPPED
    assert updated.items == order.items
    assert updated.subtotal == order.subtotal
    stored = await queries.get_order(session, order.id)
    assert stored.status is OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_any_status_is_reachable_from_any_status(session, redis, make_product):
    product = await make_product(stock=5)
    order = await place(session, redis, (product, 1))

    for status in ["delivered", "placed", "cancelled", "processing"]:
        updated = await commands.set_order_status(session, redis, str(order.id), status)
        assert updated.status.value == status


@pytest.mark.asyncio
async def test_bogus_status_is_rejected(session, redis, make_product):
    product = await make_product(stock=5)
    order = await place(session, redis, (product, 1))
    redis.messages.clear()

    with pytest.raises(ValidationError):
        await commands.set_order_status(session, redis, order.id, "bogus")

    stored = await queries.get_order(session, order.id)
    assert stored.status is OrderStatus.PLACED
    assert redis.messages == []


@pytest.mark.asyncio
async def test_status_of_missing_order(session, redis):
    missing_id = uuid4()

    with pytest.raises(NotFoundError) as exc_info:
        await commands.set_order_status(session, redis, missing_id, "shipped")

    assert exc_info.value.resource_id == missing_id


@pytest.mark.asyncio
async def test_malformed_order_id_is_a_validation_error(session, redis):
    with pytest.raises(ValidationError):
        await commands.set_order_status(session, redis, "nope", "shipped")
    with pytest.raises(ValidationError):
        await commands.delete_order_and_restock(session, redis, "nope")


@pytest.mark.asyncio
async def test_status_change_publishes_event(session, redis, make_product):
    product = await make_product(stock=5)
    order = await place(session, redis, (product, 1))

    await commands.set_order_status(session, redis, order.id, "processing")

    (event,) = redis.events("OrderStatusChanged")
    assert event["order_id"] == str(order.id)
    assert event["status"] == "processing"


@pytest.mark.asyncio
async def test_delete_restores_pre_order_stock(session, redis, make_product, stock_of):
    a = await make_product(name="A", stock=5)
    b = await make_product(name="B", stock=9)
    order = await place(session, redis, (a, 2), (b, 9))
    assert await stock_of(a.id) == 3
    assert await stock_of(b.id) == 0

    result = await commands.delete_order_and_restock(session, redis, order.id)

    assert {(r.product_id, r.name, r.new_quantity) for r in result.restocked} == {
        (a.id, "A", 5),
        (b.id, "B", 9),
    }
    assert await stock_of(a.id) == 5
    assert await stock_of(b.id) == 9
    assert await queries.get_order(session, order.id) is None


@pytest.mark.asyncio
async def test_delete_missing_order(session, redis):
    with pytest.raises(NotFoundError):
        await commands.delete_order_and_restock(session, redis, uuid4())


@pytest.mark.asyncio
async def test_delete_twice_restocks_once(session, redis, make_product, stock_of):
    product = await make_product(stock=4)
    order = await place(session, redis, (product, 4))

    await commands.delete_order_and_restock(session, redis, order.id)
    with pytest.raises(NotFoundError):
        await commands.delete_order_and_restock(session, redis, order.id)

    assert await stock_of(product.id) == 4


@pytest.mark.asyncio
async def test_delete_skips_products_removed_from_catalog(
    session, redis, make_product, stock_of
):
    kept = await make_product(name="Kept", stock=3)
    gone = await make_product(name="Gone", stock=3)
    order = await place(session, redis, (kept, 1), (gone, 1))
    await commands.delete_product(session, gone.id)

    result = await commands.delete_order_and_restock(session, redis, order.id)

    assert [r.product_id for r in result.restocked] == [kept.id]
    assert await stock_of(kept.id) == 3
    assert await queries.get_order(session, order.id) is None


@pytest.mark.asyncio
async def test_delete_publishes_event(session, redis, make_product):
    product = await make_product(stock=2)
    order = await place(session, redis, (product, 2))

    await commands.delete_order_and_restock(session, redis, order.id)

    (event,) = redis.events("OrderDeleted")
    assert event["order_id"] == str(order.id)
    assert event["restocked"] == [{"product_id": str(product.id), "new_quantity": 2}]


@pytest.mark.asyncio
async def test_failed_restock_leaves_stock_and_order_untouched(
    session, redis, make_product, stock_of, monkeypatch
):
    """在庫の戻しの途中で失敗したら、戻しも削除も反映されない"""
    a = await make_product(name="A", stock=5)
    b = await make_product(name="B", stock=5)
    order = await place(session, redis, (a, 2), (b, 2))
    redis.messages.clear()

    real_increment = inventory.increment
    calls = []

    async def flaky_increment(session, product_id, quantity):
        calls.append(product_id)
        if len(calls) == 2:
            raise OperationalError("UPDATE products", {}, Exception("disk I/O error"))
        return await real_increment(session, product_id, quantity)

    monkeypatch.setattr(inventory, "increment", flaky_increment)

    with pytest.raises(PersistenceError) as exc_info:
        await commands.delete_order_and_restock(session, redis, order.id)

    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert await stock_of(a.id) == 3
    assert await stock_of(b.id) == 3
    stored = await queries.get_order(session, order.id)
    assert stored is not None
    assert stored.items == order.items
    assert redis.messages == []
