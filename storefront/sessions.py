"""
Storefront - 会話セッションストア

チャットセッションとメッセージを永続化し、コンテンツ生成に渡す履歴を切り出す。

メッセージの順序は再生・履歴の契約なので、タイムスタンプではなく
セッションごとの連番 (seq) で決める。同じターンで user → assistant を
続けて書き込むとタイムスタンプは同値になり得るため。
連番は chat_sessions.last_seq を書き込みトランザクション内で
インクリメントして採番する (セッション行のロックで直列化される)。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import action_codec, config
from .action_codec import ActionDirective
from .errors import NotFoundError, ValidationError
from .queries import as_utc
from .tables import chat_messages, chat_sessions

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")
TITLE_LENGTH = 50


def derive_title(message: str) -> str:
    """最初のメッセージからセッションタイトルを作る。"""
    text = " ".join(message.split())
    if len(text) <= TITLE_LENGTH:
        return text
    return text[:TITLE_LENGTH] + "..."


def _stored_action(payload: str | None) -> dict | None:
    directive = action_codec.from_json(payload)
    return action_codec.to_dict(directive) if directive else None


def _message(row) -> dict:
    return {
        "id": row.id,
        "role": row.role,
        "content": row.content,
        "action": _stored_action(row.action),
        "seq": row.seq,
        "created_at": as_utc(row.created_at).isoformat(),
    }


class ConversationSessionStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window: int = config.HISTORY_WINDOW,
        max_window: int = config.MAX_HISTORY_WINDOW,
    ) -> None:
        if not 1 <= window <= max_window:
            raise ValidationError(f"History window must be between 1 and {max_window}")
        self.session_factory = session_factory
        self.window = window
        self.max_window = max_window

    async def append_and_get_history(
        self,
        user_id: str,
        session_id: str | None,
        role: str,
        content: str,
        directive: ActionDirective | None = None,
        window: int | None = None,
    ) -> tuple[str, list[dict]]:
        """
        メッセージを追記し、(セッション ID, 直近の履歴) を返す。

        session_id が None なら新しいセッションを作成する。
        履歴は古い順に並んだ直近 window 件で、今回のメッセージを含む。
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        window = self.window if window is None else window
        if not 1 <= window <= self.max_window:
            raise ValidationError(f"History window must be between 1 and {self.max_window}")

        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            if session_id is None:
                session_id = str(uuid4())
                await session.execute(
                    insert(chat_sessions).values(
                        id=session_id,
                        user_id=user_id,
                        title=derive_title(content),
                        last_seq=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                logger.info("Created chat session %s for user %s", session_id, user_id)

            # 連番の採番 (セッション行を更新してロックを取る)
            updated = await session.execute(
                update(chat_sessions)
                .where(chat_sessions.c.id == session_id, chat_sessions.c.user_id == user_id)
                .values(last_seq=chat_sessions.c.last_seq + 1, updated_at=now)
            )
            if updated.rowcount != 1:
                await session.rollback()
                raise NotFoundError("Chat session not found")
            result = await session.execute(
                select(chat_sessions.c.last_seq).where(chat_sessions.c.id == session_id)
            )
            seq = result.scalar_one()

            await session.execute(
                insert(chat_messages).values(
                    session_id=session_id,
                    user_id=user_id,
                    role=role,
                    content=content,
                    action=action_codec.to_json(directive) if directive else None,
                    seq=seq,
                    created_at=now,
                )
            )
            await session.commit()

            history = await self._history(session, session_id, window)
        return session_id, history

    async def _history(self, session: AsyncSession, session_id: str, window: int) -> list[dict]:
        result = await session.execute(
            select(chat_messages)
            .where(chat_messages.c.session_id == session_id)
            .order_by(chat_messages.c.seq.desc())
            .limit(window)
        )
        return [_message(row) for row in reversed(result.fetchall())]

    async def list_sessions(self, user_id: str, limit: int = 10) -> list[dict]:
        """最近使ったセッション一覧"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(chat_sessions)
                .where(chat_sessions.c.user_id == user_id)
                .order_by(chat_sessions.c.updated_at.desc())
                .limit(limit)
            )
            return [
                {
                    "id": row.id,
                    "title": row.title,
                    "created_at": as_utc(row.created_at).isoformat(),
                    "updated_at": as_utc(row.updated_at).isoformat(),
                }
                for row in result.fetchall()
            ]

    async def get_messages(self, user_id: str, session_id: str) -> list[dict]:
        """セッションの全メッセージを順序どおりに返す。"""
        async with self.session_factory() as session:
            await self._ensure_owner(session, user_id, session_id)
            result = await session.execute(
                select(chat_messages)
                .where(chat_messages.c.session_id == session_id)
                .order_by(chat_messages.c.seq)
            )
            return [_message(row) for row in result.fetchall()]

    async def delete_session(self, user_id: str, session_id: str) -> None:
        async with self.session_factory() as session:
            await self._ensure_owner(session, user_id, session_id)
            await session.execute(
                delete(chat_messages).where(chat_messages.c.session_id == session_id)
            )
            await session.execute(delete(chat_sessions).where(chat_sessions.c.id == session_id))
            await session.commit()
        logger.info("Deleted chat session %s", session_id)

    @staticmethod
    async def _ensure_owner(session: AsyncSession, user_id: str, session_id: str) -> None:
        result = await session.execute(
            select(chat_sessions.c.id).where(
                chat_sessions.c.id == session_id, chat_sessions.c.user_id == user_id
            )
        )
        if result.fetchone() is None:
            raise NotFoundError("Chat session not found")
