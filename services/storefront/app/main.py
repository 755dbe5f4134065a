"""
Storefront Service — FastAPI エントリーポイント

注文・在庫を扱うストアフロントのバックエンド。
Command (POST / PATCH / DELETE) と Query (GET) のエンドポイントを分離している。

認証はゲートウェイ側で行い、ユーザー情報はヘッダで受け取る:
  X-User-Id    ログイン中のユーザー ID (UUID)
  X-User-Role  "admin" なら管理者
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from . import commands, queries
from .exceptions import (
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    StorefrontError,
    ValidationError,
)
from .models import (
    Order,
    OrderList,
    Product,
    ProductCreate,
    ProductUpdate,
    RestockResult,
    StockReceipt,
    describe_errors,
)
from .tables import create_tables

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await create_tables(engine)
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    logger.info("Storefront service started")
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Service", lifespan=lifespan)


# ── エラー変換 ────────────────────────────────────

STATUS_CODES: dict[type[StorefrontError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InsufficientStockError: 409,
    PersistenceError: 503,
}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    status_code = STATUS_CODES.get(type(exc), 500)
    if isinstance(exc, PersistenceError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """リクエストの形式エラーも ValidationError と同じ 400 で返す"""
    error = ValidationError("Invalid request", errors=describe_errors(exc.errors()))
    return await storefront_error_handler(request, error)


# ── 依存関係 ──────────────────────────────────────


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_redis() -> aioredis.Redis:
    return redis_pool


def current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    if not x_user_id:
        raise HTTPException(401, "Unauthorized")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(401, "Unauthorized") from None


def require_admin(x_user_role: str | None = Header(default=None)) -> None:
    if x_user_role != "admin":
        raise HTTPException(403, "Forbidden: Admins only")


# ── Request Models ───────────────────────────────


class PlaceOrderRequest(BaseModel):
    # 中身の検証は PlaceOrderCommand が行う (不正なら 400)
    items: Any = None


class UpdateStatusRequest(BaseModel):
    status: Any = None


# ── 商品 Query ───────────────────────────────────


@app.get("/api/products", response_model=list[Product])
async def query_list_products(session: AsyncSession = Depends(get_session)):
    return await queries.list_products(session)


@app.get("/api/products/search", response_model=list[Product])
async def query_search_products(
    name: str = "", session: AsyncSession = Depends(get_session)
):
    """名前または説明で検索 (大文字小文字を区別しない)"""
    return await queries.search_products(session, name)


@app.get("/api/products/range", response_model=list[Product])
async def query_products_in_range(
    min: Decimal | None = None,
    max: Decimal | None = None,
    session: AsyncSession = Depends(get_session),
):
    """価格帯で絞り込み (min > max なら入れ替え)"""
    return await queries.products_in_price_range(session, min, max)


@app.get("/api/products/{product_id}", response_model=Product)
async def query_get_product(
    product_id: UUID, session: AsyncSession = Depends(get_session)
):
    product = await queries.get_product(session, product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


# ── 商品 Command (admin) ─────────────────────────


@app.post(
    "/api/products",
    response_model=Product,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def cmd_create_product(
    req: ProductCreate, session: AsyncSession = Depends(get_session)
):
    return await commands.create_product(session, req)


@app.patch(
    "/api/products/{product_id}",
    response_model=Product,
    dependencies=[Depends(require_admin)],
)
async def cmd_update_product(
    product_id: str, req: ProductUpdate, session: AsyncSession = Depends(get_session)
):
    return await commands.update_product(session, product_id, req)


@app.post(
    "/api/products/{product_id}/stock",
    response_model=Product,
    dependencies=[Depends(require_admin)],
)
async def cmd_receive_stock(
    product_id: str, req: StockReceipt, session: AsyncSession = Depends(get_session)
):
    """入荷コマンド"""
    return await commands.receive_stock(session, product_id, req.quantity)


@app.delete(
    "/api/products/{product_id}",
    status_code=204,
    dependencies=[Depends(require_admin)],
)
async def cmd_delete_product(
    product_id: str, session: AsyncSession = Depends(get_session)
):
    await commands.delete_product(session, product_id)


# ── 注文 Command ─────────────────────────────────


@app.post("/api/orders", response_model=Order, status_code=201)
async def cmd_place_order(
    req: PlaceOrderRequest,
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
):
    """注文確定コマンド"""
    return await commands.place_order(session, redis, user_id, req.items)


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=Order,
    dependencies=[Depends(require_admin)],
)
async def cmd_set_order_status(
    order_id: str,
    req: UpdateStatusRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
):
    """注文ステータス変更コマンド"""
    return await commands.set_order_status(session, redis, order_id, req.status)


@app.delete(
    "/api/orders/{order_id}",
    response_model=RestockResult,
    dependencies=[Depends(require_admin)],
)
async def cmd_delete_order(
    order_id: str,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
):
    """注文削除 + 在庫戻しコマンド"""
    return await commands.delete_order_and_restock(session, redis, order_id)


# ── 注文 Query ───────────────────────────────────


@app.get("/api/orders/mine", response_model=OrderList)
async def query_my_orders(
    user_id: UUID = Depends(current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """ログイン中ユーザーの注文一覧 (新しい順)"""
    orders = await queries.list_orders_for_user(session, user_id)
    return OrderList(count=len(orders), orders=orders)


@app.get(
    "/api/customers/{user_id}/orders",
    response_model=OrderList,
    dependencies=[Depends(require_admin)],
)
async def query_customer_orders(
    user_id: UUID, session: AsyncSession = Depends(get_session)
):
    """指定顧客の注文一覧 (admin)"""
    orders = await queries.list_orders_for_user(session, user_id)
    return OrderList(count=len(orders), orders=orders)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront-service"}
