"""
会話セッションストアのテスト
"""

from datetime import datetime, timezone

import pytest

from storefront import sessions
from storefront.action_codec import Navigate
from storefront.errors import NotFoundError, ValidationError
from storefront.sessions import ConversationSessionStore, derive_title


@pytest.fixture
def store(session_factory):
    return ConversationSessionStore(session_factory, window=20, max_window=50)


async def test_first_message_creates_session(store):
    session_id, history = await store.append_and_get_history(
        "user-1", None, "user", "What fruit is in season?"
    )

    assert session_id
    assert [(m["role"], m["content"]) for m in history] == [("user", "What fruit is in season?")]
    sessions_list = await store.list_sessions("user-1")
    assert sessions_list[0]["id"] == session_id
    assert sessions_list[0]["title"] == "What fruit is in season?"


async def test_turn_order_survives_identical_timestamps(store, monkeypatch):
    frozen = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    class FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return frozen

    monkeypatch.setattr(sessions, "datetime", FrozenDatetime)

    session_id, _ = await store.append_and_get_history("user-1", None, "user", "hi")
    _, history = await store.append_and_get_history(
        "user-1", session_id, "assistant", "Hello!", Navigate(page="products")
    )

    assert [(m["role"], m["seq"]) for m in history] == [("user", 1), ("assistant", 2)]
    assert history[1]["action"] == {"type": "navigate", "page": "products"}


async def test_history_is_windowed_to_most_recent(store):
    session_id = None
    for i in range(25):
        session_id, history = await store.append_and_get_history(
            "user-1", session_id, "user" if i % 2 == 0 else "assistant", f"message {i}"
        )

    assert len(history) == 20
    assert history[0]["content"] == "message 5"
    assert history[-1]["content"] == "message 24"
    assert len(await store.get_messages("user-1", session_id)) == 25


async def test_explicit_window(store):
    session_id, _ = await store.append_and_get_history("user-1", None, "user", "one")
    _, history = await store.append_and_get_history("user-1", session_id, "assistant", "two", window=1)

    assert [m["content"] for m in history] == ["two"]


@pytest.mark.parametrize("window", [0, 51, 10_000])
async def test_unbounded_window_is_rejected(store, window):
    with pytest.raises(ValidationError):
        await store.append_and_get_history("user-1", None, "user", "hi", window=window)


def test_store_rejects_oversized_default_window(session_factory):
    with pytest.raises(ValidationError):
        ConversationSessionStore(session_factory, window=100, max_window=50)


async def test_unknown_role_is_rejected(store):
    with pytest.raises(ValidationError):
        await store.append_and_get_history("user-1", None, "system", "hi")


async def test_unknown_session(store):
    with pytest.raises(NotFoundError):
        await store.append_and_get_history("user-1", "missing", "user", "hi")


async def test_sessions_are_private_to_their_owner(store):
    session_id, _ = await store.append_and_get_history("user-1", None, "user", "hi")

    with pytest.raises(NotFoundError):
        await store.append_and_get_history("user-2", session_id, "user", "hijack")
    with pytest.raises(NotFoundError):
        await store.get_messages("user-2", session_id)
    with pytest.raises(NotFoundError):
        await store.delete_session("user-2", session_id)


async def test_delete_session(store):
    session_id, _ = await store.append_and_get_history("user-1", None, "user", "hi")

    await store.delete_session("user-1", session_id)

    assert await store.list_sessions("user-1") == []
    with pytest.raises(NotFoundError):
        await store.get_messages("user-1", session_id)


def test_title_is_truncated():
    message = "Can you help me plan a week of vegetarian dinners for a family of four?"

    title = derive_title(message)

    assert title == message[:50] + "..."
    assert derive_title("  short\n question ") == "short question"
