from uuid import uuid4

import pytest

from app import inventory
from app.exceptions import ValidationError


@pytest.mark.asyncio
async def test_try_decrement_lowers_stock_when_enough(session, make_product, stock_of):
    product = await make_product(stock=5)

    async with session.begin():
        assert await inventory.try_decrement(session, product.id, 3) is True

    assert await stock_of(product.id) == 2


@pytest.mark.asyncio
async def test_try_decrement_down_to_zero(session, make_product, stock_of):
    product = await make_product(stock=4)

    async with session.begin():
        assert await inventory.try_decrement(session, product.id, 4) is True

    assert await stock_of(product.id) == 0


@pytest.mark.asyncio
async def test_try_decrement_refuses_to_go_negative(session, make_product, stock_of):
    product = await make_product(stock=2)

    async with session.begin():
        assert await inventory.try_decrement(session, product.id, 3) is False

    assert await stock_of(product.id) == 2


@pytest.mark.asyncio
async def test_try_decrement_unknown_product(session):
    async with session.begin():
        assert await inventory.try_decrement(session, uuid4(), 1) is False


@pytest.mark.asyncio
async def test_increment_returns_new_quantity(session, make_product, stock_of):
    product = await make_product(stock=1)

    async with session.begin():
        assert await inventory.increment(session, product.id, 6) == 7

    assert await stock_of(product.id) == 7


@pytest.mark.asyncio
async def test_increment_unknown_product_returns_none(session):
    async with session.begin():
        assert await inventory.increment(session, uuid4(), 1) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
async def test_ledger_rejects_bad_quantities(session, make_product, quantity):
    product = await make_product(stock=5)

    with pytest.raises(ValidationError):
        await inventory.try_decrement(session, product.id, quantity)
    with pytest.raises(ValidationError):
        await inventory.increment(session, product.id, quantity)


@pytest.mark.asyncio
async def test_get_snapshot_omits_unknown_ids(session, make_product):
    a = await make_product(name="A", price="1.50", stock=3)
    b = await make_product(name="B", price="2.00", stock=0)

    async with session.begin():
        snapshot = await inventory.get_snapshot(session, [a.id, b.id, uuid4()])

    by_id = {p.id: p for p in snapshot}
    assert set(by_id) == {a.id, b.id}
    assert by_id[a.id].quantity_in_stock == 3
    assert str(by_id[a.id].price) == "1.50"


@pytest.mark.asyncio
async def test_get_snapshot_empty(session):
    assert await inventory.get_snapshot(session, []) == []
