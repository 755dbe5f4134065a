"""
Storefront Service — 例外定義

コマンドはこれらの例外を送出し、API 層 (main.py) が HTTP レスポンスに変換する。

  ValidationError         入力不正。状態は一切変更しない
  NotFoundError           参照先 ID が存在しない
  InsufficientStockError  在庫不足 (競合に負けた場合を含む)。状態は変更しない
  PersistenceError        ストレージ / トランザクション基盤の障害
"""

from typing import Any
from uuid import UUID


class StorefrontError(Exception):
    """すべてのドメイン例外の基底クラス"""

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.message, **self.detail}


class ValidationError(StorefrontError):
    pass


class NotFoundError(StorefrontError):
    def __init__(self, resource: str, resource_id: UUID | str) -> None:
        super().__init__(
            f"{resource} not found: {resource_id}",
            resource=resource,
            resourceId=str(resource_id),
        )
        self.resource = resource
        self.resource_id = resource_id


class InsufficientStockError(StorefrontError):
    """
    在庫不足。

    アドバイザリチェックで検出した場合も、トランザクション内の条件付き減算が
    失敗した場合もこの例外になる。最新の在庫を読み直せば再試行してよい。
    """

    def __init__(self, product_id: UUID, product_name: str, requested: int) -> None:
        super().__init__(
            f"Not enough stock for {product_name}",
            productId=str(product_id),
            productName=product_name,
            requested=requested,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested


class PersistenceError(StorefrontError):
    pass
