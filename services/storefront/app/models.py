"""
Storefront Service — ドメインモデル

HTTP / CLI などの外部から受け取る緩い入力は、ここで定義した
コマンドモデルで一度だけ検証し、以降は型の付いた値として扱う。
JSON 上のフィールド名は camelCase (userId, priceAtPurchase など)。
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError

# JSON では数値として返す。内部計算は Decimal のまま
Money = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class StorefrontModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatus(str, Enum):
    """
    注文ステータス。

    遷移グラフは強制しない: どのステータスからどのステータスへも変更できる。
    """

    PLACED = "placed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ValidationError(
                f"Invalid status: {value!r} (allowed: {allowed})",
                status=str(value),
            ) from None


# ── 注文コマンド ──────────────────────────────────


class OrderItemRequest(StorefrontModel):
    product_id: UUID
    quantity: int = Field(strict=True, ge=1)


class PlaceOrderCommand(StorefrontModel):
    """検証済みの注文コマンド"""

    user_id: UUID
    items: list[OrderItemRequest] = Field(min_length=1)

    @field_validator("items")
    @classmethod
    def _unique_products(cls, items: list[OrderItemRequest]) -> list[OrderItemRequest]:
        ids = [item.product_id for item in items]
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate productIds in items")
        return items

    @property
    def product_ids(self) -> list[UUID]:
        return [item.product_id for item in self.items]

    @classmethod
    def parse(cls, user_id: Any, items: Any) -> "PlaceOrderCommand":
        """
        生の入力からコマンドを組み立てる。
        pydantic の検証エラーは ValidationError に変換する。
        """
        try:
            return cls(user_id=user_id, items=items)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid order request", errors=describe_errors(e.errors())
            ) from e


def describe_errors(errors: Iterable[dict]) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in errors
    ]


# ── 読み取りモデル ────────────────────────────────


class Product(StorefrontModel):
    id: UUID
    name: str
    description: str = ""
    price: Money
    quantity_in_stock: int


class OrderLine(StorefrontModel):
    """購入時点の商品名・価格を固定した注文明細"""

    product_id: UUID
    name: str
    price_at_purchase: Money
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price_at_purchase * self.quantity


class Order(StorefrontModel):
    id: UUID
    user_id: UUID
    items: list[OrderLine]
    subtotal: Money
    status: OrderStatus
    created_at: datetime
    updated_at: datetime


class OrderList(StorefrontModel):
    count: int
    orders: list[Order]


class RestockedProduct(StorefrontModel):
    product_id: UUID
    name: str
    new_quantity: int


class RestockResult(StorefrontModel):
    restocked: list[RestockedProduct]


# ── 商品管理 (admin) ──────────────────────────────


class ProductCreate(StorefrontModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    quantity_in_stock: int = Field(strict=True, ge=0)


class ProductUpdate(StorefrontModel):
    """在庫数は含めない。在庫は Ledger の操作でのみ変更する。"""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)


class StockReceipt(StorefrontModel):
    quantity: int = Field(strict=True, ge=1)


def parse_uuid(value: Any, field: str) -> UUID:
    """外部から渡された ID を UUID に変換する。不正な形式は ValidationError。"""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field) from None
