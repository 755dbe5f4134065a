"""
Storefront Service — 在庫台帳 (Inventory Ledger)

在庫数を変更できるのはこのモジュールの関数だけ。
呼び出し側が在庫を読んで計算して書き戻す (read-modify-write) ことはしない。

  try_decrement   条件付き減算: 在庫 >= 数量 のときだけ減らす (アトミック)
  increment       無条件加算: 返品・補充・注文削除時の戻し
  get_snapshot    ある時点の商品スナップショット (トランザクションの保証なし)

ロックやキューは使わない。唯一の同期手段は try_decrement の
UPDATE ... WHERE quantity_in_stock >= :qty で、同時実行された注文のうち
先にコミットした側が在庫を確保し、後続は更新行数 0 で失敗する。
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import ValidationError
from .models import Product
from .tables import products


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(f"Quantity must be an integer >= 1: {quantity!r}")


async def try_decrement(session: AsyncSession, product_id: UUID, quantity: int) -> bool:
    """在庫が quantity 以上なら quantity だけ減らして True を返す。"""
    _check_quantity(quantity)
    result = await session.execute(
        update(products)
        .where(
            products.c.id == product_id,
            products.c.quantity_in_stock >= quantity,
        )
        .values(
            quantity_in_stock=products.c.quantity_in_stock - quantity,
            updated_at=datetime.now(timezone.utc),
        )
    )
    return result.rowcount == 1


async def increment(session: AsyncSession, product_id: UUID, quantity: int) -> int | None:
    """
    在庫を quantity だけ増やし、増加後の在庫数を返す。
    商品が既に存在しない場合は None。
    """
    _check_quantity(quantity)
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(
            quantity_in_stock=products.c.quantity_in_stock + quantity,
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        return None
    return await session.scalar(
        select(products.c.quantity_in_stock).where(products.c.id == product_id)
    )


async def get_snapshot(
    session: AsyncSession, product_ids: Iterable[UUID]
) -> list[Product]:
    """指定 ID の商品を返す。存在しない ID は結果に含まれない。"""
    ids = list(product_ids)
    if not ids:
        return []
    result = await session.execute(select(products).where(products.c.id.in_(ids)))
    return [Product.model_validate(dict(row._mapping)) for row in result.fetchall()]
