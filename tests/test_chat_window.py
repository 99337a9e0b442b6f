"""Tests for the source list rendered under a reply."""

from __future__ import annotations

from parley.ai.types import KnowledgeReference, WebSearchProviderResponse, WebSearchResponse, WebSearchResult
from parley.ui.chat_window import format_sources


def test_format_sources_lists_web_and_knowledge_results() -> None:
    web = WebSearchResponse(
        results=WebSearchProviderResponse(
            query="python release",
            results=(
                WebSearchResult(title="Python 3.13", content="...", url="https://python.example/313"),
                WebSearchResult(title="", content="...", url="https://news.example/py"),
            ),
        )
    )
    references = [
        KnowledgeReference(id=1, content="Release notes", source_url="file:///notes.md"),
        KnowledgeReference(id=2, content="  Vacation policy applies to all staff  ", type="note"),
    ]

    rendered = format_sources(web, references)

    assert rendered.splitlines() == [
        "**Sources**",
        "",
        "1. [Python 3.13](https://python.example/313)",
        "2. [https://news.example/py](https://news.example/py)",
        "- [1] file:///notes.md",
        "- [2] Vacation policy applies to all staff",
    ]


def test_format_sources_is_empty_without_results() -> None:
    assert format_sources(None, None) == ""
    assert format_sources(WebSearchResponse(results=WebSearchProviderResponse()), []) == ""
