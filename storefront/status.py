"""
Storefront - 注文ステータスの状態機械

状態遷移:
    PENDING   → CONFIRMED / CANCELLED
    CONFIRMED → SHIPPED   / CANCELLED
    SHIPPED   → DELIVERED / CANCELLED
    DELIVERED, CANCELLED は終端状態

Saga が書き込むのは初期状態 PENDING のみ。以降の遷移は管理者操作で行う。
"""

from enum import Enum

from .errors import InvalidStatusTransition


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_terminal(status: OrderStatus) -> bool:
    return not TRANSITIONS[status]


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """遷移が許可されていなければ InvalidStatusTransition を送出する。"""
    if requested not in TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, requested.value, terminal=is_terminal(current))
