"""
Storefront - クエリハンドラ (Read 側)

注文・カタログ・カートの読み取り。戻り値は JSON 化しやすい dict。
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import String, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .money import from_cents
from .tables import cart_items, order_items, orders, products, shipping_addresses, stock_records


def as_utc(ts: datetime | None) -> datetime | None:
    # SQLite はタイムゾーンを保存しないので UTC とみなす
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def estimated_delivery(created_at: datetime) -> datetime:
    return as_utc(created_at) + timedelta(days=config.ESTIMATED_DELIVERY_DAYS)


def _order_summary(row) -> dict:
    created_at = as_utc(row.created_at)
    return {
        "id": row.id,
        "user_id": row.user_id,
        "subtotal": str(from_cents(row.subtotal_cents)),
        "tax": str(from_cents(row.tax_cents)),
        "shipping": str(from_cents(row.shipping_cents)),
        "total": str(from_cents(row.total_cents)),
        "status": row.status,
        "payment_method": row.payment_method,
        "delivery_address": row.delivery_address,
        "created_at": created_at.isoformat(),
        "estimated_delivery": estimated_delivery(created_at).isoformat(),
    }


# ── 注文 ─────────────────────────────────────────

async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    """注文ヘッダ・明細・配送先をまとめて取得する。"""
    result = await session.execute(select(orders).where(orders.c.id == order_id))
    row = result.fetchone()
    if not row:
        return None
    order = _order_summary(row)

    result = await session.execute(
        select(order_items, products.c.name)
        .select_from(order_items.outerjoin(products, order_items.c.product_id == products.c.id))
        .where(order_items.c.order_id == order_id)
        .order_by(order_items.c.id)
    )
    order["items"] = [
        {
            "product_id": item.product_id,
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": str(from_cents(item.unit_price_cents)),
        }
        for item in result.fetchall()
    ]

    result = await session.execute(
        select(shipping_addresses).where(shipping_addresses.c.order_id == order_id)
    )
    ship = result.fetchone()
    order["shipping_address"] = (
        {
            "first_name": ship.first_name,
            "last_name": ship.last_name,
            "email": ship.email,
            "phone": ship.phone,
            "address": ship.address,
            "city": ship.city,
            "state": ship.state,
            "zip_code": ship.zip_code,
            "country": ship.country,
        }
        if ship
        else None
    )
    return order


async def list_orders(session: AsyncSession, user_id: str) -> list[dict]:
    """ユーザーの注文一覧 (新しい順)"""
    result = await session.execute(
        select(orders).where(orders.c.user_id == user_id).order_by(orders.c.created_at.desc())
    )
    return [_order_summary(row) for row in result.fetchall()]


# ── カタログ ─────────────────────────────────────

def _product(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "price": str(from_cents(row.price_cents)),
        "category": row.category,
        "image": row.image,
    }


async def get_product(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(select(products).where(products.c.id == product_id))
    row = result.fetchone()
    return _product(row) if row else None


async def find_products_by_name(session: AsyncSession, name: str) -> tuple[list[dict], list[dict]]:
    """
    商品名で検索する (大文字小文字は区別しない)。

    (完全一致, 部分一致) の組を返す。
    """
    needle = name.strip().lower()
    result = await session.execute(
        select(products).where(func.lower(products.c.name, type_=String).contains(needle, autoescape=True))
    )
    partial = [_product(row) for row in result.fetchall()]
    exact = [p for p in partial if p["name"].lower() == needle]
    return exact, partial


async def missing_product_ids(session: AsyncSession, product_ids: list[str]) -> set[str]:
    """カタログに存在しない商品 ID を返す。"""
    wanted = set(product_ids)
    result = await session.execute(select(products.c.id).where(products.c.id.in_(wanted)))
    return wanted - {row.id for row in result.fetchall()}


async def list_catalog(session: AsyncSession, limit: int = config.CATALOG_CONTEXT_LIMIT) -> list[dict]:
    """在庫ありの商品一覧 (アシスタントへのコンテキスト用)"""
    result = await session.execute(
        select(products)
        .join(stock_records, stock_records.c.product_id == products.c.id)
        .where(stock_records.c.available.is_(True))
        .order_by(products.c.name)
        .limit(limit)
    )
    return [_product(row) for row in result.fetchall()]


# ── カート ───────────────────────────────────────

async def get_cart(session: AsyncSession, user_id: str) -> list[dict]:
    result = await session.execute(
        select(cart_items.c.product_id, cart_items.c.quantity, products.c.name, products.c.price_cents)
        .join(products, products.c.id == cart_items.c.product_id)
        .where(cart_items.c.user_id == user_id)
        .order_by(products.c.name)
    )
    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "quantity": row.quantity,
            "unit_price": str(from_cents(row.price_cents)),
        }
        for row in result.fetchall()
    ]
