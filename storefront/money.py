"""
Storefront - 金額計算

金額は Decimal で受け取り、最小通貨単位 (セント) の整数で保存する。
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
# クライアント送信値と再計算値の許容誤差
TOLERANCE = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    return int((amount / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


def within_tolerance(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= TOLERANCE
