"""Tests for message filtering and the search result store."""

from __future__ import annotations

from parley.ai.services.messages import (
    filter_context_messages,
    filter_messages,
    filter_useful_messages,
    get_knowledge_base_ids,
    get_main_text_content,
)
from parley.ai.services.result_store import ResultStore
from parley.ai.types import Message

from tests.helpers import conversation


def test_filter_context_messages_drops_up_to_last_clear() -> None:
    before = conversation("old question", "old answer")
    after = conversation("new question")
    messages = [*before, Message.clear_marker(), *after]

    assert filter_context_messages(messages) == after


def test_filter_context_messages_without_marker_keeps_all() -> None:
    messages = conversation("a", "b", "c")

    assert filter_context_messages(messages) == messages


def test_filter_useful_messages_prefers_useful_reply() -> None:
    question = Message.user("question")
    first = Message.assistant("first", ask_id=question.id)
    useful = Message.assistant("useful", ask_id=question.id, useful=True)
    latest = Message.assistant("latest", ask_id=question.id)
    follow_up = Message.user("follow up")

    result = filter_useful_messages([question, first, useful, latest, follow_up])

    assert [message.content for message in result] == ["question", "useful", "follow up"]


def test_filter_useful_messages_keeps_latest_without_useful_flag() -> None:
    question = Message.user("question")
    first = Message.assistant("first", ask_id=question.id)
    second = Message.assistant("second", ask_id=question.id)
    follow_up = Message.user("next")

    result = filter_useful_messages([question, first, second, follow_up])

    assert [message.content for message in result] == ["question", "second", "next"]


def test_filter_useful_messages_trims_leading_and_trailing_assistants() -> None:
    stray = Message.assistant("greeting")
    messages = [stray, *conversation("question", "answer")]

    result = filter_useful_messages(messages)

    assert [message.content for message in result] == ["question"]


def test_filter_messages_drops_markers_and_blank_content() -> None:
    messages = [Message.user("hi"), Message.clear_marker(), Message.assistant("  "), Message.assistant("hello")]

    assert [message.content for message in filter_messages(messages)] == ["hi", "hello"]


def test_message_accessors() -> None:
    message = Message.user("text", knowledge_base_ids=["kb-1", "", "kb-2"])

    assert get_main_text_content(message) == "text"
    assert get_main_text_content(None) == ""
    assert get_knowledge_base_ids(message) == ["kb-1", "kb-2"]
    assert get_knowledge_base_ids(Message.user("plain")) == []


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_result_store_expires_entries() -> None:
    clock = _Clock()
    store = ResultStore(ttl=10, clock=clock)
    store.set("web-search-1", ["result"])

    assert store.get("web-search-1") == ["result"]
    assert "web-search-1" in store

    clock.now += 10
    assert store.get("web-search-1") is None
    assert "web-search-1" not in store


def test_result_store_set_prunes_expired_entries_and_delete() -> None:
    clock = _Clock()
    store = ResultStore(ttl=5, clock=clock)
    store.set("web-search-1", 1)
    store.set("knowledge-search-1", 2, ttl=60)
    store.set("web-search-2", 3)

    assert store.delete("web-search-2") is True
    assert store.delete("web-search-2") is False

    clock.now += 6
    store.set("web-search-3", 4)

    assert len(store) == 2
    assert store.get("knowledge-search-1") == 2
    assert store.get("web-search-3") == 4


def test_result_store_without_ttl_keeps_values() -> None:
    clock = _Clock()
    store = ResultStore(ttl=None, clock=clock)
    store.set("key", "value")

    clock.now += 10_000

    assert store.get("key") == "value"
    store.clear()
    assert len(store) == 0
