"""
Storefront - コンテンツ生成クライアント

外部のチャットモデル (Cohere Chat API) を呼び出してアシスタントの応答を得る。
プリアンブルで指示子の書式を教え、商品カタログをコンテキストとして渡す。

タイムアウトは必ず設定する。失敗時は GeneratorUnavailableError を送出し、
呼び出し側 (ChatTurn) がフォールバック文言に切り替える。
"""

import logging

import httpx

from . import action_codec, config
from .action_codec import AddToCart, Navigate, Search, ViewProduct
from .dispatcher import ALLOWED_PAGES
from .errors import GeneratorUnavailableError

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "I'm having trouble connecting right now. Please try again!"


def build_preamble(products: list[dict]) -> str:
    """指示子の書式と商品カタログを含むシステムプロンプトを組み立てる。"""
    catalog = "\n".join(
        f"- {p['name']} - ${p['price']} - ID: {p['id']}" for p in products
    )
    examples = "\n".join(
        [
            f"Navigation: \"Sure! {action_codec.encode(Navigate(page='cart'))}\"",
            f"Search: \"Let me find that! {action_codec.encode(Search(query='apples'))}\"",
            "Add to cart: \"Adding to cart! "
            + action_codec.encode(
                AddToCart(product_id="<product id>", product_name="Organic Apples", quantity=2)
            )
            + "\"",
            "View product: \"Here's the product! "
            + action_codec.encode(ViewProduct(product_id="<product id>"))
            + "\"",
        ]
    )
    return (
        "You are ShopBot, a friendly shopping assistant for a grocery store.\n\n"
        f"Available products:\n{catalog or '(none)'}\n\n"
        "When the user asks you to do something in the store, append exactly one "
        f"action block to your reply.\n{examples}\n"
        f"Valid pages: {', '.join(sorted(ALLOWED_PAGES))}.\n"
        "Only include one action per response. Use product IDs from the list above. "
        "If a product is not in the list, say so and do not include an action."
    )


class ContentGenerator:
    def __init__(
        self,
        api_url: str = config.COHERE_API_URL,
        api_key: str = config.COHERE_API_KEY,
        model: str = config.COHERE_MODEL,
        timeout: float = config.GENERATOR_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    async def generate(
        self,
        message: str,
        history: list[dict],
        products: list[dict],
    ) -> str:
        """ユーザーのメッセージに対するアシスタントの生テキストを返す。"""
        body = {
            "model": self.model,
            "message": message,
            "chat_history": [
                {"role": "USER" if m["role"] == "user" else "CHATBOT", "message": m["content"]}
                for m in history
            ],
            "preamble": build_preamble(products),
            "temperature": 0.7,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.api_url,
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                resp.raise_for_status()
                text = resp.json()["text"]
        except httpx.TimeoutException as e:
            logger.warning("Content generator timed out after %ss", self.timeout)
            raise GeneratorUnavailableError("Content generator timed out") from e
        except httpx.HTTPError as e:
            logger.error("Content generator request failed: %s", e)
            raise GeneratorUnavailableError(str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Content generator returned an unexpected body")
            raise GeneratorUnavailableError("Unexpected generator response") from e

        if not isinstance(text, str):
            raise GeneratorUnavailableError("Unexpected generator response")
        return text
