"""
Storefront Service — クエリハンドラ (Read 側)

読み取り専用の操作。注文一覧と商品カタログの参照を提供する。
各関数は自分で短いトランザクションを開いて閉じる。
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderLine, Product
from .tables import order_items, orders, products


async def _fetch_orders(session: AsyncSession, *criteria) -> list[Order]:
    """注文ヘッダと明細を 2 回のクエリで読み出して組み立てる (新しい順)。"""
    result = await session.execute(
        select(orders)
        .where(*criteria)
        .order_by(orders.c.created_at.desc(), orders.c.seq.desc())
    )
    headers = result.fetchall()
    if not headers:
        return []

    result = await session.execute(
        select(order_items)
        .where(order_items.c.order_id.in_([h.id for h in headers]))
        .order_by(order_items.c.order_id, order_items.c.position)
    )
    lines: dict[UUID, list[OrderLine]] = defaultdict(list)
    for row in result.fetchall():
        lines[row.order_id].append(
            OrderLine(
                product_id=row.product_id,
                name=row.name,
                price_at_purchase=row.price_at_purchase,
                quantity=row.quantity,
            )
        )

    return [
        Order(
            id=h.id,
            user_id=h.user_id,
            items=lines[h.id],
            subtotal=h.subtotal,
            status=h.status,
            created_at=h.created_at,
            updated_at=h.updated_at,
        )
        for h in headers
    ]


async def load_order(session: AsyncSession, order_id: UUID) -> Order | None:
    """呼び出し側のトランザクション内で注文を読む。"""
    found = await _fetch_orders(session, orders.c.id == order_id)
    return found[0] if found else None


async def get_order(session: AsyncSession, order_id: UUID) -> Order | None:
    async with session.begin():
        return await load_order(session, order_id)


async def list_orders_for_user(session: AsyncSession, user_id: UUID) -> list[Order]:
    """指定ユーザーの注文一覧 (新しい順)"""
    async with session.begin():
        return await _fetch_orders(session, orders.c.user_id == user_id)


# ── 商品カタログ ──────────────────────────────────


def _to_products(rows) -> list[Product]:
    return [Product.model_validate(dict(row._mapping)) for row in rows]


async def list_products(session: AsyncSession) -> list[Product]:
    async with session.begin():
        result = await session.execute(select(products).order_by(products.c.name))
        return _to_products(result.fetchall())


async def get_product(session: AsyncSession, product_id: UUID) -> Product | None:
    async with session.begin():
        result = await session.execute(
            select(products).where(products.c.id == product_id)
        )
        found = _to_products(result.fetchall())
    return found[0] if found else None


async def search_products(session: AsyncSession, term: str) -> list[Product]:
    """名前または説明に term を含む商品 (大文字小文字を区別しない)"""
    term = term.strip()
    if not term:
        return []
    async with session.begin():
        result = await session.execute(
            select(products)
            .where(
                or_(
                    products.c.name.icontains(term, autoescape=True),
                    products.c.description.icontains(term, autoescape=True),
                )
            )
            .order_by(products.c.name)
        )
        return _to_products(result.fetchall())


async def products_in_price_range(
    session: AsyncSession,
    min_price: Decimal | None = None,
    max_price: Decimal | None = None,
) -> list[Product]:
    """価格帯で絞り込む。min > max の場合は入れ替える。"""
    low = min_price if min_price is not None else Decimal("0")
    high = max_price
    if high is not None and low > high:
        low, high = high, low

    criteria = [products.c.price >= low]
    if high is not None:
        criteria.append(products.c.price <= high)

    async with session.begin():
        result = await session.execute(
            select(products).where(*criteria).order_by(products.c.price)
        )
        return _to_products(result.fetchall())
