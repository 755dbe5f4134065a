"""
Storefront Service — イベント定義

書き込みがコミットされた後、Redis Pub/Sub の order_events チャネルに発行する。
イベントは過去形で命名し、不変として扱う。
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class OrderedQuantity(BaseModel):
    product_id: UUID
    quantity: int


class OrderPlaced(BaseModel):
    """注文が確定した (全明細の在庫を確保済み)"""
    order_id: UUID
    user_id: UUID
    items: list[OrderedQuantity]
    subtotal: Decimal
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文ステータスが変更された"""
    order_id: UUID
    status: str
    timestamp: datetime


class RestockedQuantity(BaseModel):
    product_id: UUID
    new_quantity: int


class OrderDeleted(BaseModel):
    """注文が削除され、在庫が戻された (補償アクション)"""
    order_id: UUID
    restocked: list[RestockedQuantity]
    timestamp: datetime


ORDER_EVENTS_CHANNEL = "order_events"
