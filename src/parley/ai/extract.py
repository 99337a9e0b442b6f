"""Parsing of the search-intent XML produced by the extraction model."""

from __future__ import annotations

import html
import logging
import re

from .types import ExtractResults, KnowledgeExtract, WebsearchExtract

__all__ = ["extract_info_from_xml"]

LOGGER = logging.getLogger(__name__)

_BLOCK_PATTERN = r"<{tag}>(.*?)</{tag}>"
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def extract_info_from_xml(text: str | None) -> ExtractResults | None:
    """Parse ``<websearch>`` and ``<knowledge>`` blocks from ``text``.

    ``question`` and ``links`` are always returned as tuples, even when the
    model emitted a single element. Returns ``None`` when neither block is
    present so callers can tell "no answer" apart from "nothing to search".
    """

    if not text:
        return None
    body = _CODE_FENCE.sub("", text.strip())

    websearch_block = _find_block(body, "websearch")
    knowledge_block = _find_block(body, "knowledge")
    if websearch_block is None and knowledge_block is None:
        LOGGER.debug("Extraction reply contained no websearch/knowledge blocks")
        return None

    websearch = None
    if websearch_block is not None:
        websearch = WebsearchExtract(
            question=_find_all(websearch_block, "question"),
            links=_find_all(websearch_block, "links"),
        )

    knowledge = None
    if knowledge_block is not None:
        rewrite = _find_all(knowledge_block, "rewrite")
        knowledge = KnowledgeExtract(
            question=_find_all(knowledge_block, "question"),
            rewrite=rewrite[0] if rewrite else "",
        )

    return ExtractResults(websearch=websearch, knowledge=knowledge)


def _find_block(text: str, tag: str) -> str | None:
    match = re.search(_BLOCK_PATTERN.format(tag=tag), text, flags=re.DOTALL | re.IGNORECASE)
    if match is None:
        return None
    return match.group(1)


def _find_all(text: str, tag: str) -> tuple[str, ...]:
    values = re.findall(_BLOCK_PATTERN.format(tag=tag), text, flags=re.DOTALL | re.IGNORECASE)
    cleaned = (html.unescape(value).strip() for value in values)
    return tuple(value for value in cleaned if value)
