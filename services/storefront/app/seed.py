"""
Storefront Service — サンプルデータ投入

    DATABASE_URL=... python -m app.seed

products テーブルを空にしてサンプル商品を登録する。
注文テーブルには触れない。
"""

import asyncio
import logging
import os
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from . import commands
from .models import Product, ProductCreate
from .tables import create_tables, products

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    ProductCreate(name="Laptop", description="14 inch laptop", price=Decimal("899.99"), quantity_in_stock=10),
    ProductCreate(name="Headphones", description="Noise cancelling", price=Decimal("199.99"), quantity_in_stock=25),
    ProductCreate(name="Mouse", description="Wireless mouse", price=Decimal("29.99"), quantity_in_stock=50),
    ProductCreate(name="Keyboard", description="Mechanical", price=Decimal("79.99"), quantity_in_stock=30),
    ProductCreate(name="Bluetooth Speaker", description="Portable speaker, 12h batt", price=Decimal("59.95"), quantity_in_stock=20),
]


async def seed(session: AsyncSession) -> list[Product]:
    async with session.begin():
        await session.execute(delete(products))
    logger.info("Cleared products table")
    return [await commands.create_product(session, data) for data in SAMPLE_PRODUCTS]


async def main() -> None:
    engine = create_async_engine(os.environ["DATABASE_URL"])
    try:
        await create_tables(engine)
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            created = await seed(session)
        logger.info("Inserted %d products", len(created))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
