"""
テスト共通フィクスチャ

テストごとに一時ファイルの SQLite を作る。NullPool でセッションごとに
別コネクションを使うので、同時更新の直列化もそのまま検証できる。
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import insert
from sqlalchemy.pool import NullPool

from storefront import database
from storefront.tables import products, stock_records

CATALOG = [
    # (id, name, price_cents, stock)
    ("p-apple", "Organic Apples", 499, 10),
    ("p-milk", "Whole Milk", 349, 5),
    ("p-bread", "Sourdough Bread", 599, 3),
    ("p-eggs", "Free Range Eggs", 429, 0),
]


@pytest.fixture
async def engine(tmp_path):
    engine = database.create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", poolclass=NullPool
    )
    await database.create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return database.create_session_factory(engine)


@pytest.fixture
async def catalog(session_factory):
    async with session_factory() as session:
        for product_id, name, price_cents, stock in CATALOG:
            await session.execute(
                insert(products).values(
                    id=product_id, name=name, price_cents=price_cents, category="Grocery"
                )
            )
            await session.execute(
                insert(stock_records).values(
                    product_id=product_id, quantity=stock, available=stock > 0, version=0
                )
            )
        await session.commit()
    return {product_id: name for product_id, name, _, _ in CATALOG}


@pytest.fixture
def redis():
    return AsyncMock()
