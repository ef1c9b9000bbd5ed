"""
Storefront - リクエスト / レスポンスモデル

外部インターフェースは camelCase、内部は snake_case。
金額は Decimal で扱い、JSON には文字列として出力する。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .status import OrderStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── 認証 ─────────────────────────────────────────

class Principal(BaseModel):
    """外部認証サービスが検証したユーザー"""
    user_id: str
    roles: list[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


# ── 注文 ─────────────────────────────────────────

class LineItem(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, decimal_places=2)


class ShippingInfo(CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str = ""
    zip_code: str
    country: str

    def summary(self) -> str:
        """注文ヘッダに非正規化して保存する配送先の要約"""
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}"


class OrderTotals(CamelModel):
    subtotal: Decimal = Field(ge=0, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    shipping: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    total: Decimal = Field(ge=0, decimal_places=2)


class PlaceOrderRequest(CamelModel):
    line_items: list[LineItem]
    shipping_info: ShippingInfo
    payment_method: str = "credit-card"
    subtotal: Decimal = Field(ge=0, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    shipping: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    total: Decimal = Field(ge=0, decimal_places=2)

    def totals(self) -> OrderTotals:
        return OrderTotals(
            subtotal=self.subtotal, tax=self.tax, shipping=self.shipping, total=self.total
        )


class PlacedOrder(CamelModel):
    """Saga 成功時の結果。確認画面用に入力をそのまま返す。"""
    order_id: str
    user_id: str
    line_items: list[LineItem]
    shipping_info: ShippingInfo
    payment_method: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    status: OrderStatus
    created_at: datetime
    estimated_delivery: datetime


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


# ── チャット ─────────────────────────────────────

class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    session_id: str | None = None
