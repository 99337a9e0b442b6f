"""Helpers that decide which stored messages reach a model."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..types import Message

__all__ = [
    "filter_context_messages",
    "filter_useful_messages",
    "filter_messages",
    "get_main_text_content",
    "get_knowledge_base_ids",
]


def filter_context_messages(messages: Sequence[Message]) -> list[Message]:
    """Drop everything up to and including the last ``clear`` marker."""

    for index in range(len(messages) - 1, -1, -1):
        if messages[index].type == "clear":
            return list(messages[index + 1:])
    return list(messages)


def filter_useful_messages(messages: Sequence[Message]) -> list[Message]:
    """Keep one assistant reply per question.

    When a question was answered several times the reply marked useful wins,
    otherwise the latest. Trailing assistant messages and anything before the
    first user message are dropped.
    """

    replies: dict[str, list[Message]] = {}
    for message in messages:
        if message.role == "assistant" and message.ask_id:
            replies.setdefault(message.ask_id, []).append(message)

    dropped: set[str] = set()
    for group in replies.values():
        if len(group) < 2:
            continue
        keep = next((message for message in group if message.useful), group[-1])
        dropped.update(message.id for message in group if message.id != keep.id)

    result = [message for message in messages if message.id not in dropped]
    while result and result[-1].role == "assistant":
        result.pop()
    while result and result[0].role != "user":
        result.pop(0)
    return result


def filter_messages(messages: Iterable[Message]) -> list[Message]:
    """Drop clear markers and messages without text."""

    return [message for message in messages if message.type != "clear" and message.content.strip()]


def get_main_text_content(message: Message | None) -> str:
    if message is None:
        return ""
    return message.content or ""


def get_knowledge_base_ids(message: Message | None) -> list[str]:
    if message is None or not message.knowledge_base_ids:
        return []
    return [base_id for base_id in message.knowledge_base_ids if base_id]
