"""
テスト用フィクスチャ

- テストごとに使い捨ての SQLite ファイル DB (aiosqlite) を作る
- Redis の代わりに発行メッセージを記録するだけのダブルを使う
"""

import json
import os
from decimal import Decimal

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# app.main は import 時に DATABASE_URL を読む
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from app import commands  # noqa: E402
from app.models import ProductCreate  # noqa: E402
from app.tables import create_tables, products  # noqa: E402


class RecordingRedis:
    """publish されたメッセージを記録する"""

    def __init__(self) -> None:
        self.messages: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.messages.append((channel, json.loads(message)))
        return 1

    def events(self, event_type: str) -> list[dict]:
        return [m["data"] for _, m in self.messages if m["event_type"] == event_type]


class UnavailableRedis:
    async def publish(self, channel: str, message: str) -> int:
        raise RedisConnectionError("Connection refused")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"timeout": 30},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def unavailable_redis():
    return UnavailableRedis()


@pytest.fixture
def make_product(session):
    async def _make(name="Widget", price="10.00", stock=5, description=""):
        return await commands.create_product(
            session,
            ProductCreate(
                name=name,
                description=description,
                price=Decimal(price),
                quantity_in_stock=stock,
            ),
        )

    return _make


@pytest.fixture
def stock_of(session):
    async def _stock(product_id) -> int:
        async with session.begin():
            return await session.scalar(
                select(products.c.quantity_in_stock).where(products.c.id == product_id)
            )

    return _stock
