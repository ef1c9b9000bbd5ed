"""
Storefront - FastAPI エントリーポイント

チェックアウト (注文 Saga) とチャット (アクション・プロトコル) を HTTP API として公開する。
依存オブジェクトは lifespan で生成して app.state に置く。
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import commands, config, database, events, queries
from .assistant import ContentGenerator
from .auth import AuthClient, get_principal, require_admin
from .conversation import ChatTurn
from .dispatcher import ActionDispatcher
from .errors import (
    FatalSagaError,
    InvalidStatusTransition,
    NotFoundError,
    ValidationError,
)
from .inventory import StockLedger
from .models import ChatRequest, PlaceOrderRequest, Principal, UpdateStatusRequest
from .orchestrator import OrderSagaOrchestrator
from .sessions import ConversationSessionStore

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def configure(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis | None,
    auth_client: AuthClient | None = None,
    generator: ContentGenerator | None = None,
) -> None:
    """コンポーネントを組み立てて app.state に登録する。"""
    stock_ledger = StockLedger(session_factory)
    store = ConversationSessionStore(session_factory)
    app.state.session_factory = session_factory
    app.state.redis = redis
    app.state.auth_client = auth_client or AuthClient()
    app.state.orchestrator = OrderSagaOrchestrator(session_factory, stock_ledger, redis)
    app.state.sessions = store
    app.state.chat_turn = ChatTurn(
        session_factory,
        store,
        generator or ContentGenerator(),
        ActionDispatcher(session_factory),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = database.create_engine(config.DATABASE_URL)
    await database.create_tables(engine)
    redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    configure(app, database.create_session_factory(engine), redis_pool)
    logger.info("Storefront started")
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Core", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request", "fields": jsonable_encoder(exc.errors())}, status_code=422
    )


# ── 注文 ─────────────────────────────────────────

@app.post("/orders", status_code=201)
async def place_order(req: PlaceOrderRequest, request: Request, principal: Principal = Depends(get_principal)):
    """
    注文 Saga を実行する。

    Step 1-2 の失敗だけがエラーとして返る。配送先・在庫の失敗は
    ログに残るだけで、注文は成功として返す。
    """
    orchestrator: OrderSagaOrchestrator = request.app.state.orchestrator
    try:
        placed = await orchestrator.execute(
            user_id=principal.user_id,
            line_items=req.line_items,
            shipping_info=req.shipping_info,
            payment_method=req.payment_method,
            totals=req.totals(),
        )
    except ValidationError as e:
        raise HTTPException(400, str(e)) from e
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except FatalSagaError as e:
        logger.error("Checkout failed for user %s: %s", principal.user_id, e)
        raise HTTPException(500, e.public_message) from e

    order = placed.model_dump(mode="json", by_alias=True)
    return {
        "orderId": placed.order_id,
        "estimatedDelivery": order["estimatedDelivery"],
        "order": order,
    }


@app.get("/orders")
async def list_orders(request: Request, principal: Principal = Depends(get_principal)):
    async with request.app.state.session_factory() as session:
        return await queries.list_orders(session, principal.user_id)


@app.get("/orders/{order_id}")
async def get_order(order_id: str, request: Request, principal: Principal = Depends(get_principal)):
    async with request.app.state.session_factory() as session:
        order = await queries.get_order(session, order_id)
    if not order or (order["user_id"] != principal.user_id and not principal.is_admin):
        raise HTTPException(404, "Order not found")
    return order


@app.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    req: UpdateStatusRequest,
    request: Request,
    principal: Principal = Depends(require_admin),
):
    """注文ステータスの遷移 (管理者のみ)"""
    async with request.app.state.session_factory() as session:
        try:
            previous = await commands.update_order_status(session, order_id, req.status)
        except NotFoundError as e:
            raise HTTPException(404, str(e)) from e
        except InvalidStatusTransition as e:
            raise HTTPException(409, str(e)) from e

    await events.publish(
        request.app.state.redis,
        events.ORDER_EVENTS,
        "OrderStatusChanged",
        events.OrderStatusChanged(
            order_id=order_id,
            previous_status=previous.value,
            status=req.status.value,
            timestamp=datetime.now(timezone.utc),
        ),
    )
    logger.info("Order %s: %s -> %s by %s", order_id, previous.value, req.status.value, principal.user_id)
    return {"orderId": order_id, "previousStatus": previous.value, "status": req.status.value}


# ── チャット ─────────────────────────────────────

@app.post("/chat")
async def chat(req: ChatRequest, request: Request, principal: Principal = Depends(get_principal)):
    chat_turn: ChatTurn = request.app.state.chat_turn
    try:
        result = await chat_turn.run(principal.user_id, req.message, req.session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except ValidationError as e:
        raise HTTPException(400, str(e)) from e
    return result.to_response()


@app.get("/chat")
async def list_chat_sessions(request: Request, principal: Principal = Depends(get_principal)):
    store: ConversationSessionStore = request.app.state.sessions
    return await store.list_sessions(principal.user_id)


@app.get("/chat/{session_id}")
async def get_chat_messages(session_id: str, request: Request, principal: Principal = Depends(get_principal)):
    store: ConversationSessionStore = request.app.state.sessions
    try:
        return await store.get_messages(principal.user_id, session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e


@app.delete("/chat/{session_id}")
async def delete_chat_session(session_id: str, request: Request, principal: Principal = Depends(get_principal)):
    store: ConversationSessionStore = request.app.state.sessions
    try:
        await store.delete_session(principal.user_id, session_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e)) from e
    return {"success": True}


# ── カート ───────────────────────────────────────

@app.get("/cart")
async def get_cart(request: Request, principal: Principal = Depends(get_principal)):
    async with request.app.state.session_factory() as session:
        return await queries.get_cart(session, principal.user_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront"}
