"""
チャットターンのテスト (コンテンツ生成はスタブ)
"""

import pytest
from sqlalchemy.exc import OperationalError

from storefront import queries
from storefront.action_codec import Navigate
from storefront.assistant import FALLBACK_MESSAGE
from storefront.conversation import ChatTurn
from storefront.dispatcher import ActionDispatcher
from storefront.errors import GeneratorUnavailableError
from storefront.sessions import ConversationSessionStore

from .helpers import FakeGenerator


@pytest.fixture
def store(session_factory):
    return ConversationSessionStore(session_factory)


def make_turn(session_factory, store, generator):
    return ChatTurn(session_factory, store, generator, ActionDispatcher(session_factory))


async def test_navigate_turn(session_factory, store, catalog):
    generator = FakeGenerator('Sure! <ACTION>{"type":"navigate","page":"cart"}</ACTION>')

    result = await make_turn(session_factory, store, generator).run("user-1", "take me to my cart")

    assert result.clean_message == "Sure!"
    assert isinstance(result.directive, Navigate)
    assert result.effect.target == "/cart"
    assert result.notice is None

    messages = await store.get_messages("user-1", result.session_id)
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "take me to my cart"),
        ("assistant", "Sure!"),
    ]
    assert messages[1]["action"] == {"type": "navigate", "page": "cart"}


async def test_unresolvable_add_to_cart_keeps_clean_message(session_factory, store, catalog):
    generator = FakeGenerator(
        'Adding it now! <ACTION>{"type":"addToCart","productId":"xxx",'
        '"quantity":1,"productName":"unicorn dust"}</ACTION>'
    )

    result = await make_turn(session_factory, store, generator).run("user-1", "add unicorn dust")

    assert result.clean_message == "Adding it now!"
    assert result.effect is None
    assert "unicorn dust" in result.notice

    messages = await store.get_messages("user-1", result.session_id)
    assert [m["content"] for m in messages] == ["add unicorn dust", "Adding it now!", result.notice]
    async with session_factory() as session:
        assert await queries.get_cart(session, "user-1") == []


async def test_add_to_cart_turn_mutates_cart_once(session_factory, store, catalog):
    generator = FakeGenerator(
        'Great choice! <ACTION>{"type":"addToCart","productId":"p-apple",'
        '"quantity":2,"productName":"Organic Apples"}</ACTION>'
    )

    result = await make_turn(session_factory, store, generator).run("user-1", "add 2 apples")

    assert result.effect.details["cartQuantity"] == 2
    # 履歴の取得で指示子が再実行されることはない
    await store.get_messages("user-1", result.session_id)
    async with session_factory() as session:
        assert (await queries.get_cart(session, "user-1"))[0]["quantity"] == 2


async def test_generator_receives_prior_history_and_catalog(session_factory, store, catalog):
    generator = FakeGenerator("Hello!")
    turn = make_turn(session_factory, store, generator)

    first = await turn.run("user-1", "hi")
    await turn.run("user-1", "what's fresh?", first.session_id)

    call = generator.calls[-1]
    assert call["message"] == "what's fresh?"
    assert [(m["role"], m["content"]) for m in call["history"]] == [
        ("user", "hi"),
        ("assistant", "Hello!"),
    ]
    # 在庫切れの商品はコンテキストに含めない
    assert {p["id"] for p in call["products"]} == {"p-apple", "p-milk", "p-bread"}


async def test_generator_failure_falls_back(session_factory, store, catalog):
    generator = FakeGenerator(error=GeneratorUnavailableError("timed out"))

    result = await make_turn(session_factory, store, generator).run("user-1", "hello?")

    assert result.clean_message == FALLBACK_MESSAGE
    assert result.directive is None
    messages = await store.get_messages("user-1", result.session_id)
    assert messages[-1]["content"] == FALLBACK_MESSAGE


async def test_malformed_directive_is_not_dispatched(session_factory, store, catalog):
    generator = FakeGenerator("Okay <ACTION>{not json}</ACTION>")

    result = await make_turn(session_factory, store, generator).run("user-1", "do something")

    assert result.clean_message == "Okay"
    assert result.directive is None
    assert result.effect is None
    assert result.to_response()["directive"] is None


async def test_lookup_failure_becomes_notice(session_factory, store, catalog, monkeypatch):
    async def db_down(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("db down"))

    monkeypatch.setattr(queries, "get_product", db_down)
    generator = FakeGenerator('Here! <ACTION>{"type":"viewProduct","productId":"p-milk"}</ACTION>')

    result = await make_turn(session_factory, store, generator).run("user-1", "show me milk")

    assert result.clean_message == "Here!"
    assert result.effect is None
    assert result.notice
    messages = await store.get_messages("user-1", result.session_id)
    assert [m["content"] for m in messages] == ["show me milk", "Here!", result.notice]
