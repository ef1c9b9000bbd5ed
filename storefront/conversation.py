"""
Storefront - チャットターン

1 ターンの処理:
  1. ユーザーのメッセージを追記し、履歴を取得
  2. カタログ (在庫ありの商品) を取得
  3. コンテンツ生成を呼び出す (失敗・タイムアウト時はフォールバック文言)
  4. 指示子をデコードし、表示用テキストを指示子つきで保存
  5. 指示子を実行 (保存の後。失敗してもターン自体は成功)

指示子の実行はこのターンの中で 1 回だけ。履歴の再生で再実行されることはない。
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import action_codec, queries
from .action_codec import ActionDirective
from .assistant import FALLBACK_MESSAGE, ContentGenerator
from .dispatcher import ActionDispatcher, DispatchContext, SideEffect
from .errors import DispatchError, GeneratorUnavailableError
from .sessions import ConversationSessionStore

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    session_id: str
    clean_message: str
    directive: ActionDirective | None = None
    effect: SideEffect | None = None
    notice: str | None = None
    history: list[dict] = field(default_factory=list)

    def to_response(self) -> dict:
        return {
            "sessionId": self.session_id,
            "cleanMessage": self.clean_message,
            "directive": action_codec.to_dict(self.directive) if self.directive else None,
            "effect": self.effect.to_dict() if self.effect else None,
            "notice": self.notice,
        }


class ChatTurn:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ConversationSessionStore,
        generator: ContentGenerator,
        dispatcher: ActionDispatcher,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.generator = generator
        self.dispatcher = dispatcher

    async def run(self, user_id: str, message: str, session_id: str | None = None) -> TurnResult:
        # ── 1. ユーザーメッセージを保存 ─────────────
        session_id, history = await self.store.append_and_get_history(
            user_id, session_id, "user", message
        )

        # ── 2. カタログ ─────────────────────────────
        async with self.session_factory() as session:
            products = await queries.list_catalog(session)

        # ── 3. コンテンツ生成 ───────────────────────
        try:
            # 今回のメッセージは別引数で渡すので履歴からは除く
            raw = await self.generator.generate(message, history[:-1], products)
        except GeneratorUnavailableError:
            logger.warning("Using fallback reply for session %s", session_id)
            raw = FALLBACK_MESSAGE

        # ── 4. デコードして保存 ─────────────────────
        clean_message, directive = action_codec.decode(raw)
        _, history = await self.store.append_and_get_history(
            user_id, session_id, "assistant", clean_message, directive
        )
        result = TurnResult(
            session_id=session_id,
            clean_message=clean_message,
            directive=directive,
            history=history,
        )

        # ── 5. 指示子を実行 ─────────────────────────
        if directive is None:
            return result
        try:
            result.effect = await self.dispatcher.dispatch(
                directive, DispatchContext(user_id=user_id)
            )
        except DispatchError as e:
            logger.info("Directive %s not executed: %s", directive.type, e)
            result.notice = e.notice
            _, result.history = await self.store.append_and_get_history(
                user_id, session_id, "assistant", e.notice
            )
        return result
