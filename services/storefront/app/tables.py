"""
Storefront Service — テーブル定義

注文と在庫は同じデータベースに置く。
在庫の条件付き減算と注文の INSERT を 1 つのトランザクションで
コミット / ロールバックできるようにするため。

  products      商品と在庫数 (quantity_in_stock は Ledger 経由でのみ更新)
  orders        注文ヘッダ (status 以外は不変)
  order_items   注文明細 (購入時点の商品名・価格のスナップショット)
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("price", Numeric(12, 2), nullable=False),
    Column("quantity_in_stock", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("price >= 0", name="ck_products_price"),
    CheckConstraint("quantity_in_stock >= 0", name="ck_products_stock"),
)

orders = Table(
    "orders",
    metadata,
    # seq は同一時刻に作成された注文の並び順を安定させるためだけに使う
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", Uuid, nullable=False, unique=True),
    Column("user_id", Uuid, nullable=False),
    Column("subtotal", Numeric(12, 2), nullable=False),
    Column("status", String(20), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("subtotal >= 0", name="ck_orders_subtotal"),
)

order_items = Table(
    "order_items",
    metadata,
    Column(
        "order_id",
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("position", Integer, primary_key=True),
    # 商品が後で削除されても明細は残るので外部キーにはしない
    Column("product_id", Uuid, nullable=False),
    Column("name", String(200), nullable=False),
    Column("price_at_purchase", Numeric(12, 2), nullable=False),
    Column("quantity", Integer, nullable=False),
    UniqueConstraint("order_id", "product_id", name="uq_order_items_product"),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    CheckConstraint("price_at_purchase >= 0", name="ck_order_items_price"),
)

# 「自分の注文 (新しい順)」のクエリ用
Index("ix_orders_user_created", orders.c.user_id, orders.c.created_at)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
