from sqlalchemy import func, select


async def count_rows(session_factory, table, *where) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(table).where(*where))
        return result.scalar_one()


class FakeGenerator:
    """決まった応答を返すコンテンツ生成のスタブ"""

    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    async def generate(self, message, history, products):
        self.calls.append({"message": message, "history": history, "products": products})
        if self.error:
            raise self.error
        return self.reply
