"""
Storefront - イベント定義

注文・Saga で発生した事実をイベントとして定義し、Redis Pub/Sub で通知する。
イベントは過去形で命名し、不変として扱う。
"""

import json
import logging
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_EVENTS = "order_events"
SAGA_EVENTS = "saga_events"


class OrderPlaced(BaseModel):
    """注文が確定した (明細の書き込みまで成功)"""
    order_id: str
    user_id: str
    item_count: int
    total: Decimal
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """管理者操作でステータスが遷移した"""
    order_id: str
    previous_status: str
    status: str
    timestamp: datetime


class SagaFinished(BaseModel):
    """Saga が終了した (SagaCompleted / SagaFailed / SagaCompensated)"""
    order_id: str
    saga_log: list[dict]


async def publish(
    redis: aioredis.Redis | None,
    channel: str,
    event_type: str,
    event: BaseModel,
) -> None:
    """
    イベントを Redis に発行する。

    通知は付随的な処理なので、失敗しても呼び出し元には伝播させない。
    """
    if redis is None:
        logger.warning("Redis not configured, dropping %s event", event_type)
        return
    payload = json.dumps(
        {"event_type": event_type, "data": event.model_dump(mode="json")},
        default=str,
    )
    try:
        await redis.publish(channel, payload)
    except RedisError:
        logger.exception("Failed to publish %s to %s", event_type, channel)
