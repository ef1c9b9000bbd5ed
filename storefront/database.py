"""
Storefront - データベース接続

非同期エンジンとセッションファクトリを生成する。
Saga の各ステップは独立したセッションで書き込み・コミットする。
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .tables import metadata


def create_engine(database_url: str, **kwargs) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """スキーマを作成する (存在するテーブルはそのまま)。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
