"""
Storefront Service — コマンドハンドラ (Write 側)

注文の確定 (place_order) は在庫の確保と注文の作成を
1 つのトランザクションにまとめる:

  1. 入力を PlaceOrderCommand で検証 (副作用なし)
  2. カタログから商品スナップショットを 1 回で取得
     └─ 存在しない ID が 1 つでもあればリクエスト全体を拒否
  3. アドバイザリチェック (在庫 >= 数量)
     └─ 早期失敗のためだけのもの。正しさはステップ 4 が保証する
  4. トランザクション開始
     ├─ 明細ごとに条件付き減算 (inventory.try_decrement)
     │   └─ 1 つでも失敗 → ロールバック → InsufficientStockError
     └─ 全明細が成功したら注文を INSERT
  5. コミット後にイベントを Redis に発行

「注文が存在する ⇔ その全明細が在庫を確保済み」が常に成り立つ。
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import delete, insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import inventory, queries
from .events import (
    ORDER_EVENTS_CHANNEL,
    OrderDeleted,
    OrderedQuantity,
    OrderPlaced,
    OrderStatusChanged,
    RestockedQuantity,
)
from .exceptions import (
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import (
    Order,
    OrderLine,
    OrderStatus,
    PlaceOrderCommand,
    Product,
    ProductCreate,
    ProductUpdate,
    RestockedProduct,
    RestockResult,
    parse_uuid,
)
from .tables import order_items, orders, products

logger = logging.getLogger(__name__)


async def _publish(redis: aioredis.Redis, event: BaseModel) -> None:
    """
    コミット済みの変更をイベントとして発行する。
    発行に失敗してもコミット済みの書き込みは取り消さない。
    """
    event_type = type(event).__name__
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps(
                {"event_type": event_type, "data": event.model_dump(mode="json")},
                default=str,
            ),
        )
    except RedisError:
        logger.exception("Failed to publish %s", event_type)


# ── 注文の確定 ────────────────────────────────────


async def place_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    user_id: Any,
    items: Any,
) -> Order:
    """
    注文確定コマンド

    Raises:
        ValidationError: 入力不正 / 存在しない productId
        InsufficientStockError: 在庫不足 (競合に負けた場合を含む)
        PersistenceError: DB 障害
    """
    command = PlaceOrderCommand.parse(user_id, items)

    # 1. カタログのスナップショット (トランザクション外の読み取り)
    try:
        async with session.begin():
            snapshot = await inventory.get_snapshot(session, command.product_ids)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to read product catalog") from e

    by_id = {product.id: product for product in snapshot}
    missing = [str(pid) for pid in command.product_ids if pid not in by_id]
    if missing:
        raise ValidationError("One or more productIds are invalid", missing=missing)

    # 2. アドバイザリチェックと明細の組み立て
    lines: list[OrderLine] = []
    for item in command.items:
        product = by_id[item.product_id]
        if product.quantity_in_stock < item.quantity:
            logger.info(
                "Order rejected before commit: %s has %d, requested %d",
                product.id,
                product.quantity_in_stock,
                item.quantity,
            )
            raise InsufficientStockError(product.id, product.name, item.quantity)
        lines.append(
            OrderLine(
                product_id=product.id,
                name=product.name,
                price_at_purchase=product.price,
                quantity=item.quantity,
            )
        )

    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    order_id = uuid4()
    now = datetime.now(timezone.utc)

    # 3. 在庫確保 + 注文作成 (all-or-nothing)
    try:
        async with session.begin():
            # 行ロックの取得順を product_id 順に揃える (注文同士のデッドロック回避)
            for line in sorted(lines, key=lambda line: line.product_id):
                if not await inventory.try_decrement(
                    session, line.product_id, line.quantity
                ):
                    raise InsufficientStockError(
                        line.product_id, line.name, line.quantity
                    )

            await session.execute(
                insert(orders).values(
                    id=order_id,
                    user_id=command.user_id,
                    subtotal=subtotal,
                    status=OrderStatus.PLACED.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.execute(
                insert(order_items),
                [
                    {
                        "order_id": order_id,
                        "position": position,
                        "product_id": line.product_id,
                        "name": line.name,
                        "price_at_purchase": line.price_at_purchase,
                        "quantity": line.quantity,
                    }
                    for position, line in enumerate(lines)
                ],
            )
    except InsufficientStockError as e:
        logger.warning(
            "Order for user %s rolled back: stock for %s was taken by a concurrent order",
            command.user_id,
            e.product_id,
        )
        raise
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to place order") from e

    logger.info(
        "Order %s placed by %s (%d lines, subtotal %s)",
        order_id,
        command.user_id,
        len(lines),
        subtotal,
    )

    await _publish(
        redis,
        OrderPlaced(
            order_id=order_id,
            user_id=command.user_id,
            items=[
                OrderedQuantity(product_id=line.product_id, quantity=line.quantity)
                for line in lines
            ],
            subtotal=subtotal,
            timestamp=now,
        ),
    )

    return Order(
        id=order_id,
        user_id=command.user_id,
        items=lines,
        subtotal=subtotal,
        status=OrderStatus.PLACED,
        created_at=now,
        updated_at=now,
    )


# ── 注文ライフサイクル ────────────────────────────


async def set_order_status(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: Any,
    status: Any,
) -> Order:
    """
    注文ステータス変更コマンド

    遷移グラフは強制しない (delivered → placed なども許可)。
    """
    new_status = OrderStatus.parse(status)
    order_id = parse_uuid(order_id, "orderId")
    now = datetime.now(timezone.utc)

    try:
        async with session.begin():
            result = await session.execute(
                update(orders)
                .where(orders.c.id == order_id)
                .values(status=new_status.value, updated_at=now)
            )
            if result.rowcount == 0:
                raise NotFoundError("Order", order_id)
            order = await queries.load_order(session, order_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to update order status") from e

    logger.info("Order %s status set to %s", order_id, new_status.value)
    await _publish(
        redis,
        OrderStatusChanged(order_id=order_id, status=new_status.value, timestamp=now),
    )
    return order


async def delete_order_and_restock(
    session: AsyncSession,
    redis: aioredis.Redis,
    order_id: Any,
) -> RestockResult:
    """
    注文削除コマンド (補償アクション)

    各明細の数量を在庫に戻してから注文を削除する。
    在庫の戻しと削除は同じトランザクションで行うため、
    途中で失敗した場合はどちらも反映されない。
    削除した注文の履歴は残さない。
    """
    order_id = parse_uuid(order_id, "orderId")

    try:
        async with session.begin():
            order = await queries.load_order(session, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)

            restocked: list[RestockedProduct] = []
            for line in order.items:
                new_quantity = await inventory.increment(
                    session, line.product_id, line.quantity
                )
                if new_quantity is None:
                    logger.warning(
                        "Product %s no longer exists; %d units of order %s not restocked",
                        line.product_id,
                        line.quantity,
                        order_id,
                    )
                    continue
                restocked.append(
                    RestockedProduct(
                        product_id=line.product_id,
                        name=line.name,
                        new_quantity=new_quantity,
                    )
                )

            await session.execute(
                delete(order_items).where(order_items.c.order_id == order_id)
            )
            await session.execute(delete(orders).where(orders.c.id == order_id))
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to delete order") from e

    logger.info("Order %s deleted, %d products restocked", order_id, len(restocked))
    await _publish(
        redis,
        OrderDeleted(
            order_id=order_id,
            restocked=[
                RestockedQuantity(product_id=r.product_id, new_quantity=r.new_quantity)
                for r in restocked
            ],
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return RestockResult(restocked=restocked)


# ── 商品管理 (admin) ──────────────────────────────


async def _require_product(session: AsyncSession, product_id: UUID) -> Product:
    found = await inventory.get_snapshot(session, [product_id])
    if not found:
        raise NotFoundError("Product", product_id)
    return found[0]


async def create_product(session: AsyncSession, data: ProductCreate) -> Product:
    product_id = uuid4()
    now = datetime.now(timezone.utc)
    try:
        async with session.begin():
            await session.execute(
                insert(products).values(
                    id=product_id,
                    name=data.name,
                    description=data.description,
                    price=data.price,
                    quantity_in_stock=data.quantity_in_stock,
                    created_at=now,
                    updated_at=now,
                )
            )
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to create product") from e

    logger.info("Product %s created: %s", product_id, data.name)
    return Product(
        id=product_id,
        name=data.name,
        description=data.description,
        price=data.price,
        quantity_in_stock=data.quantity_in_stock,
    )


async def update_product(
    session: AsyncSession, product_id: Any, changes: ProductUpdate
) -> Product:
    """名前・説明・価格を更新する。在庫数は変更しない。"""
    product_id = parse_uuid(product_id, "productId")
    values = changes.model_dump(exclude_none=True)
    try:
        async with session.begin():
            if values:
                result = await session.execute(
                    update(products)
                    .where(products.c.id == product_id)
                    .values(**values, updated_at=datetime.now(timezone.utc))
                )
                if result.rowcount == 0:
                    raise NotFoundError("Product", product_id)
            product = await _require_product(session, product_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to update product") from e

    logger.info("Product %s updated: %s", product_id, sorted(values))
    return product


async def receive_stock(session: AsyncSession, product_id: Any, quantity: int) -> Product:
    """入荷: 在庫台帳の increment で在庫を増やす。"""
    product_id = parse_uuid(product_id, "productId")
    try:
        async with session.begin():
            if await inventory.increment(session, product_id, quantity) is None:
                raise NotFoundError("Product", product_id)
            product = await _require_product(session, product_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to receive stock") from e

    logger.info(
        "Product %s received %d units, now %d",
        product_id,
        quantity,
        product.quantity_in_stock,
    )
    return product


async def delete_product(session: AsyncSession, product_id: Any) -> None:
    product_id = parse_uuid(product_id, "productId")
    try:
        async with session.begin():
            result = await session.execute(
                delete(products).where(products.c.id == product_id)
            )
            if result.rowcount == 0:
                raise NotFoundError("Product", product_id)
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to delete product") from e

    logger.info("Product %s deleted", product_id)
