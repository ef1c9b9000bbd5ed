"""
Storefront - 注文 Saga オーケストレーター

Saga パターン (オーケストレーション型):
  注文ヘッダ・明細・配送先・在庫は独立したリソースで、まとめて扱える
  トランザクションがない。順序付きの書き込みと補償トランザクションで
  整合性を保つ。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. 注文ヘッダを PENDING で作成            [致命的]            │
  │     └─ 補償「注文削除」を登録                                  │
  │  2. 注文明細を一括作成                    [致命的]            │
  │     └─ 失敗 → 登録済みの補償を逆順に実行してエラーを返す       │
  │  3. 配送先を保存                          [許容: ログのみ]    │
  │  4. 明細ごとに在庫を減算                  [許容: 明細単位]    │
  │  5. お届け予定日 = 現在 + 3 日                                 │
  └──────────────────────────────────────────────────────────────┘

  Step 2 がコミットされた時点で注文は確定扱い。以降の失敗は呼び出し元に
  見せない。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, config, events, queries
from .errors import (
    FatalSagaError,
    NotFoundError,
    StockContentionError,
    TolerableSagaError,
    ValidationError,
)
from .inventory import StockLedger
from .models import LineItem, OrderTotals, PlacedOrder, ShippingInfo
from .money import within_tolerance
from .status import OrderStatus

logger = logging.getLogger(__name__)


@dataclass
class Compensation:
    """永続化済みのステップを取り消す逆操作"""
    action: str
    run: Callable[[], Awaitable[None]]


class SagaLog:
    """各ステップの実行記録。Saga 終了時にイベントとして発行する。"""

    def __init__(self) -> None:
        self.entries: list[dict] = []

    def begin(self, step: int, action: str) -> dict:
        entry = {
            "step": step,
            "action": action,
            "status": "EXECUTING",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.entries.append(entry)
        return entry

    @staticmethod
    def complete(entry: dict) -> None:
        entry["status"] = "COMPLETED"

    @staticmethod
    def fail(entry: dict, error: Exception) -> None:
        entry["status"] = "FAILED"
        entry["error"] = str(error)


class OrderSagaOrchestrator:
    """注文 Saga のオーケストレーター (呼び出しごとにステートレス)"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stock_ledger: StockLedger,
        redis: aioredis.Redis | None,
    ):
        self.session_factory = session_factory
        self.stock = stock_ledger
        self.redis = redis

    async def execute(
        self,
        user_id: str,
        line_items: list[LineItem],
        shipping_info: ShippingInfo,
        payment_method: str,
        totals: OrderTotals,
    ) -> PlacedOrder:
        """
        Saga を実行する。

        致命的ステップの失敗は補償を済ませてから FatalSagaError で返す。
        許容ステップの失敗はステップ境界で吸収する。
        """
        await self._validate(line_items, totals)

        order_id = str(uuid4())
        now = datetime.now(timezone.utc)
        saga_log = SagaLog()
        compensations: list[Compensation] = []

        # ── Step 1: 注文ヘッダを作成 ────────────────
        entry = saga_log.begin(1, "CreateOrder")
        try:
            async with self.session_factory() as session:
                await commands.insert_order(
                    session,
                    order_id,
                    user_id,
                    totals,
                    payment_method,
                    shipping_info.summary(),
                    now,
                )
        except SQLAlchemyError as e:
            # まだ何も書き込んでいないので補償は不要
            saga_log.fail(entry, e)
            logger.error("Order %s: header insert failed: %s", order_id, e)
            await self._publish_saga_event("SagaFailed", order_id, saga_log)
            raise FatalSagaError("CreateOrder", str(e)) from e
        saga_log.complete(entry)
        compensations.append(Compensation("DeleteOrder", lambda: self._delete_order(order_id)))

        # ── Step 2: 注文明細を一括作成 ──────────────
        entry = saga_log.begin(2, "CreateOrderItems")
        try:
            async with self.session_factory() as session:
                await commands.insert_order_items(session, order_id, line_items)
        except SQLAlchemyError as e:
            saga_log.fail(entry, e)
            logger.error("Order %s: item insert failed, compensating: %s", order_id, e)
            await self._compensate(compensations, saga_log)
            await self._publish_saga_event("SagaCompensated", order_id, saga_log)
            raise FatalSagaError("CreateOrderItems", str(e)) from e
        saga_log.complete(entry)
        # ここで注文は確定。以降は取り消さない。
        compensations.clear()

        # ── Step 3: 配送先を保存 (許容) ─────────────
        entry = saga_log.begin(3, "CreateShippingRecord")
        try:
            async with self.session_factory() as session:
                await commands.insert_shipping_record(session, order_id, shipping_info)
            saga_log.complete(entry)
        except SQLAlchemyError as e:
            saga_log.fail(entry, e)
            self._tolerate(order_id, "CreateShippingRecord", e)

        # ── Step 4: 在庫を減算 (明細単位で許容) ─────
        for item in line_items:
            entry = saga_log.begin(4, f"DecrementStock:{item.product_id}")
            try:
                await self.stock.decrement(item.product_id, item.quantity)
                saga_log.complete(entry)
            except (NotFoundError, StockContentionError, SQLAlchemyError) as e:
                saga_log.fail(entry, e)
                self._tolerate(order_id, f"DecrementStock:{item.product_id}", e)

        # ── Step 5: お届け予定日 ────────────────────
        estimated_delivery = now + timedelta(days=config.ESTIMATED_DELIVERY_DAYS)

        await events.publish(
            self.redis,
            events.ORDER_EVENTS,
            "OrderPlaced",
            events.OrderPlaced(
                order_id=order_id,
                user_id=user_id,
                item_count=len(line_items),
                total=totals.total,
                timestamp=now,
            ),
        )
        await self._publish_saga_event("SagaCompleted", order_id, saga_log)
        logger.info("Order %s placed with %s item(s)", order_id, len(line_items))

        # ── Step 6: 入力をそのまま返す ──────────────
        return PlacedOrder(
            order_id=order_id,
            user_id=user_id,
            line_items=line_items,
            shipping_info=shipping_info,
            payment_method=payment_method,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            status=OrderStatus.PENDING,
            created_at=now,
            estimated_delivery=estimated_delivery,
        )

    async def _validate(self, line_items: list[LineItem], totals: OrderTotals) -> None:
        """書き込み前の事前条件チェック"""
        if not line_items:
            raise ValidationError("No items in order")
        for item in line_items:
            if item.quantity <= 0:
                raise ValidationError("Quantity must be a positive integer")

        computed = sum((item.unit_price * item.quantity for item in line_items), Decimal("0"))
        if not within_tolerance(computed, totals.subtotal):
            raise ValidationError("Subtotal does not match line items")
        if not within_tolerance(totals.subtotal + totals.tax + totals.shipping, totals.total):
            raise ValidationError("Total does not match subtotal, tax and shipping")

        async with self.session_factory() as session:
            missing = await queries.missing_product_ids(
                session, [item.product_id for item in line_items]
            )
        if missing:
            raise NotFoundError(f"Unknown product(s): {', '.join(sorted(missing))}")

    async def _delete_order(self, order_id: str) -> None:
        async with self.session_factory() as session:
            await commands.delete_order(session, order_id)

    async def _compensate(self, compensations: list[Compensation], saga_log: SagaLog) -> None:
        """登録済みの補償を逆順に実行する。失敗しても残りは続行する。"""
        for compensation in reversed(compensations):
            entry = saga_log.begin(len(saga_log.entries) + 1, f"{compensation.action} (COMPENSATING)")
            try:
                await compensation.run()
                saga_log.complete(entry)
            except SQLAlchemyError as e:
                saga_log.fail(entry, e)
                logger.exception("Compensation %s failed", compensation.action)

    @staticmethod
    def _tolerate(order_id: str, step: str, error: Exception) -> None:
        err = TolerableSagaError(f"Order {order_id}: {step} failed: {error}")
        logger.warning("%s (continuing)", err)

    async def _publish_saga_event(
        self,
        event_type: str,
        order_id: str,
        saga_log: SagaLog,
    ) -> None:
        await events.publish(
            self.redis,
            events.SAGA_EVENTS,
            event_type,
            events.SagaFinished(order_id=order_id, saga_log=saga_log.entries),
        )
