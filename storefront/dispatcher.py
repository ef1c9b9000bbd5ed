"""
Storefront - アクション・ディスパッチャ

デコード済みの指示子を現在のアプリケーション状態に照らして検証し、
副作用を 1 回だけ実行する。

  navigate    : 許可リストのページへのリダイレクト (状態変更なし)
  search      : 商品検索ページへのリダイレクト (状態変更なし)
  addToCart   : 商品を解決してカートに追加 (冪等ではない)
  viewProduct : 商品を解決して詳細ページへ (状態変更なし)

同じ指示子を 2 回実行すれば 2 回カートに追加される。
ターンごとに 1 回だけ実行するのは呼び出し側 (ChatTurn) の責務。
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, queries
from .action_codec import ActionDirective, AddToCart, Navigate, Search, ViewProduct
from .errors import DispatchError, NotFoundError

logger = logging.getLogger(__name__)

ALLOWED_PAGES = frozenset({"cart", "products", "orders", "meal-planner", "dashboard"})


@dataclass
class DispatchContext:
    user_id: str


@dataclass
class SideEffect:
    """実行結果。フロントエンドはこれを見て画面遷移などを行う。"""
    kind: str
    target: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "target": self.target, "details": self.details}


class ActionDispatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def dispatch(self, directive: ActionDirective, context: DispatchContext) -> SideEffect:
        """指示子の種類に応じたハンドラを呼び出す。"""
        handler = {
            Navigate: self._navigate,
            Search: self._search,
            AddToCart: self._add_to_cart,
            ViewProduct: self._view_product,
        }[type(directive)]
        effect = await handler(directive, context)
        logger.info("Dispatched %s for user %s", directive.type, context.user_id)
        return effect

    async def _navigate(self, directive: Navigate, context: DispatchContext) -> SideEffect:
        page = directive.page.strip().strip("/").lower()
        if page not in ALLOWED_PAGES:
            raise DispatchError(f"Sorry, I can't open the {directive.page!r} page.")
        return SideEffect(kind="redirect", target=f"/{page}")

    async def _search(self, directive: Search, context: DispatchContext) -> SideEffect:
        query = directive.query.strip()
        if not query:
            raise DispatchError("Sorry, I didn't catch what to search for.")
        return SideEffect(
            kind="redirect",
            target=f"/products?search={quote(query)}",
            details={"query": query},
        )

    async def _add_to_cart(self, directive: AddToCart, context: DispatchContext) -> SideEffect:
        if directive.quantity <= 0:
            raise DispatchError("Sorry, the quantity must be at least 1.")

        async with self.session_factory() as session:
            product = await self._resolve(session, directive.product_id, directive.product_name)
            try:
                cart_quantity = await commands.add_to_cart(
                    session, context.user_id, product["id"], directive.quantity
                )
            except SQLAlchemyError as e:
                logger.exception("Cart update failed for user %s", context.user_id)
                raise DispatchError("Sorry, I couldn't add that to your cart. Please try again.") from e

        return SideEffect(
            kind="cart_updated",
            target="/cart",
            details={
                "productId": product["id"],
                "productName": product["name"],
                "added": directive.quantity,
                "cartQuantity": cart_quantity,
            },
        )

    async def _view_product(self, directive: ViewProduct, context: DispatchContext) -> SideEffect:
        async with self.session_factory() as session:
            product = await self._resolve(session, directive.product_id, directive.product_name)
        return SideEffect(
            kind="redirect",
            target=f"/products/{product['id']}",
            details={"productId": product["id"], "productName": product["name"]},
        )

    async def _resolve(
        self,
        session: AsyncSession,
        product_id: str | None,
        product_name: str | None,
    ) -> dict:
        """商品参照 (ID または表示名) をカタログの商品に解決する。"""
        try:
            return await resolve_product(session, product_id, product_name)
        except NotFoundError as e:
            label = product_name or product_id or "that product"
            raise DispatchError(f"Sorry, I couldn't find \"{label}\" in our store.") from e
        except SQLAlchemyError as e:
            logger.exception("Product lookup failed for %r", product_name or product_id)
            raise DispatchError("Sorry, I couldn't look that up right now. Please try again.") from e


async def resolve_product(
    session: AsyncSession,
    product_id: str | None,
    product_name: str | None,
) -> dict:
    """
    ID → 名前の完全一致 → 一意な部分一致 の順に解決する。

    アシスタントは ID の代わりに表示名を入れてくることがあるので、
    product_id も名前として試す。
    """
    if product_id:
        product = await queries.get_product(session, product_id)
        if product:
            return product

    for ref in (product_name, product_id):
        if not ref or not ref.strip():
            continue
        exact, partial = await queries.find_products_by_name(session, ref)
        if len(exact) == 1:
            return exact[0]
        if not exact and len(partial) == 1:
            return partial[0]

    raise NotFoundError(f"Product not found: {product_name or product_id}")
