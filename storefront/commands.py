"""
Storefront - コマンドハンドラ (Write 側)

注文・配送先・カートへの書き込み。各関数は受け取ったセッションでコミットまで行う。
Saga から呼ばれる関数は、ステップ単位で独立したトランザクションになる。
"""

from datetime import datetime, timezone

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidStatusTransition, NotFoundError
from .models import LineItem, OrderTotals, ShippingInfo
from .money import to_cents
from .status import OrderStatus, ensure_transition
from .tables import cart_items, order_items, orders, shipping_addresses


async def insert_order(
    session: AsyncSession,
    order_id: str,
    user_id: str,
    totals: OrderTotals,
    payment_method: str,
    delivery_address: str,
    now: datetime,
) -> None:
    """注文ヘッダを PENDING で作成する (Saga Step 1)"""
    await session.execute(
        insert(orders).values(
            id=order_id,
            user_id=user_id,
            subtotal_cents=to_cents(totals.subtotal),
            tax_cents=to_cents(totals.tax),
            shipping_cents=to_cents(totals.shipping),
            total_cents=to_cents(totals.total),
            status=OrderStatus.PENDING.value,
            payment_method=payment_method,
            delivery_address=delivery_address,
            created_at=now,
            updated_at=now,
        )
    )
    await session.commit()


async def insert_order_items(
    session: AsyncSession,
    order_id: str,
    line_items: list[LineItem],
) -> None:
    """注文明細を一括で作成する (Saga Step 2)。単価は注文時点のスナップショット。"""
    await session.execute(
        insert(order_items),
        [
            {
                "order_id": order_id,
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price_cents": to_cents(item.unit_price),
            }
            for item in line_items
        ],
    )
    await session.commit()


async def insert_shipping_record(
    session: AsyncSession,
    order_id: str,
    info: ShippingInfo,
) -> None:
    """配送先スナップショットを保存する (Saga Step 3)"""
    await session.execute(
        insert(shipping_addresses).values(
            order_id=order_id,
            first_name=info.first_name,
            last_name=info.last_name,
            email=info.email,
            phone=info.phone,
            address=info.address,
            city=info.city,
            state=info.state,
            zip_code=info.zip_code,
            country=info.country,
        )
    )
    await session.commit()


async def delete_order(session: AsyncSession, order_id: str) -> None:
    """
    注文を削除する (Saga の補償トランザクション)

    明細ゼロの注文を外部に見せないため、ヘッダごと取り消す。
    """
    await session.execute(delete(order_items).where(order_items.c.order_id == order_id))
    await session.execute(
        delete(shipping_addresses).where(shipping_addresses.c.order_id == order_id)
    )
    await session.execute(delete(orders).where(orders.c.id == order_id))
    await session.commit()


async def update_order_status(
    session: AsyncSession,
    order_id: str,
    status: OrderStatus,
) -> OrderStatus:
    """
    注文ステータスを遷移させ、遷移前のステータスを返す。

    UPDATE は読んだステータスを条件にするため、同時更新で状態機械を
    逆行することはない。
    """
    result = await session.execute(select(orders.c.status).where(orders.c.id == order_id))
    row = result.fetchone()
    if not row:
        raise NotFoundError("Order not found")

    current = OrderStatus(row.status)
    ensure_transition(current, status)

    updated = await session.execute(
        update(orders)
        .where(orders.c.id == order_id, orders.c.status == current.value)
        .values(status=status.value, updated_at=datetime.now(timezone.utc))
    )
    if updated.rowcount != 1:
        await session.rollback()
        raise InvalidStatusTransition(current.value, status.value)
    await session.commit()
    return current


async def add_to_cart(
    session: AsyncSession,
    user_id: str,
    product_id: str,
    quantity: int,
) -> int:
    """カートに商品を追加し、追加後の数量を返す。既存行があれば数量を加算する。"""
    now = datetime.now(timezone.utc)
    condition = (cart_items.c.user_id == user_id) & (cart_items.c.product_id == product_id)
    updated = await session.execute(
        update(cart_items)
        .where(condition)
        .values(quantity=cart_items.c.quantity + quantity, updated_at=now)
    )
    if updated.rowcount == 0:
        await session.execute(
            insert(cart_items).values(
                user_id=user_id, product_id=product_id, quantity=quantity, updated_at=now
            )
        )
    result = await session.execute(select(cart_items.c.quantity).where(condition))
    new_quantity = result.scalar_one()
    await session.commit()
    return new_quantity
