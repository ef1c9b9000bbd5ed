"""
Storefront - 在庫台帳 (StockLedger)

商品ごとの在庫数を管理する。

  new_quantity = max(0, current - qty)
  available    = new_quantity > 0

同一商品への同時チェックアウトは通常のトラフィックで起こり得るため、
version 列による楽観的ロック (Compare-And-Swap) で商品単位に直列化する:
  1. 現在の quantity と version を読む
  2. WHERE version = :読んだ値 で UPDATE
  3. 更新行数 0 なら他のリクエストが先に更新した → 再読込してリトライ
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import config
from .errors import NotFoundError, StockContentionError, ValidationError
from .tables import stock_records

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = config.STOCK_MAX_RETRIES,
    ) -> None:
        self.session_factory = session_factory
        self.max_retries = max_retries

    async def get(self, product_id: str) -> dict:
        async with self.session_factory() as session:
            result = await session.execute(
                select(stock_records).where(stock_records.c.product_id == product_id)
            )
            row = result.fetchone()
        if not row:
            raise NotFoundError(f"No stock record for product {product_id}")
        return {
            "product_id": row.product_id,
            "quantity": row.quantity,
            "available": bool(row.available),
            "version": row.version,
        }

    async def decrement(self, product_id: str, qty: int) -> int:
        """
        在庫を qty だけ減らし、更新後の在庫数を返す。

        0 未満にはならない (0 でクランプ)。
        """
        if qty <= 0:
            raise ValidationError("Quantity must be a positive integer")

        async with self.session_factory() as session:
            for attempt in range(1, self.max_retries + 1):
                result = await session.execute(
                    select(stock_records.c.quantity, stock_records.c.version).where(
                        stock_records.c.product_id == product_id
                    )
                )
                row = result.fetchone()
                if not row:
                    await session.rollback()
                    raise NotFoundError(f"No stock record for product {product_id}")

                new_quantity = max(0, row.quantity - qty)
                updated = await session.execute(
                    update(stock_records)
                    .where(
                        stock_records.c.product_id == product_id,
                        stock_records.c.version == row.version,
                    )
                    .values(
                        quantity=new_quantity,
                        available=new_quantity > 0,
                        version=row.version + 1,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                if updated.rowcount == 1:
                    await session.commit()
                    logger.info(
                        "Stock for %s: %s -> %s", product_id, row.quantity, new_quantity
                    )
                    return new_quantity

                # 競合: トランザクションを閉じて最新の値を読み直す
                await session.rollback()
                logger.debug(
                    "Stock CAS conflict for %s (attempt %s)", product_id, attempt
                )

        raise StockContentionError(
            f"Gave up updating stock for {product_id} after {self.max_retries} attempts"
        )
