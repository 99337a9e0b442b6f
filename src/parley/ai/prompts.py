"""Prompt templates used by the chat services."""

from __future__ import annotations

__all__ = [
    "SEARCH_SUMMARY_PROMPT",
    "SEARCH_SUMMARY_PROMPT_WEB_ONLY",
    "SEARCH_SUMMARY_PROMPT_KNOWLEDGE_ONLY",
    "SUMMARIZE_TOPIC_PROMPT",
    "TRANSLATE_PROMPT",
    "SUGGESTIONS_PROMPT",
    "build_conversation_block",
    "select_search_summary_prompt",
]

_EXTRACTION_RULES = """\
You are a search query planner. Read the conversation and decide which searches
would help answer the user's latest message. Reply with XML only.

Rules:
- Rewrite follow-up questions into standalone questions; resolve pronouns from the conversation.
- Split compound requests into at most 3 focused questions.
- If the user only greets you, chats casually or asks something answerable without
  looking anything up, answer with the single question `not_needed`.
- Reply in the language of the user's message.
"""

_WEBSEARCH_FORMAT = """\
<websearch>
  <question>standalone question for a web search engine</question>
  <links>URL copied from the user's message, only when present</links>
</websearch>

If the user asks you to summarize or read specific URLs, answer with the question
`summarize` and list every URL in its own <links> element.
"""

_KNOWLEDGE_FORMAT = """\
<knowledge>
  <rewrite>the user's request rewritten as one standalone sentence</rewrite>
  <question>keyword-rich question for a document retrieval system</question>
</knowledge>
"""

SEARCH_SUMMARY_PROMPT = (
    _EXTRACTION_RULES
    + "\nReply with both blocks:\n\n"
    + _WEBSEARCH_FORMAT
    + "\n"
    + _KNOWLEDGE_FORMAT
)

SEARCH_SUMMARY_PROMPT_WEB_ONLY = _EXTRACTION_RULES + "\nReply with this block:\n\n" + _WEBSEARCH_FORMAT

SEARCH_SUMMARY_PROMPT_KNOWLEDGE_ONLY = _EXTRACTION_RULES + "\nReply with this block:\n\n" + _KNOWLEDGE_FORMAT

SUMMARIZE_TOPIC_PROMPT = """\
Summarize the conversation into a title of at most 10 words in the language the
user writes in. Reply with the title only: no quotes, no punctuation at the end.
"""

TRANSLATE_PROMPT = """\
You are a translation engine. Translate the text inside <translate_input> into
{target_language}. Reply with the translation only and keep the original formatting.

<translate_input>
{text}
</translate_input>
"""

SUGGESTIONS_PROMPT = """\
Based on the conversation, propose up to 3 short follow-up messages the user is
likely to send next. Reply with a JSON array of strings and nothing else.
"""


def select_search_summary_prompt(*, web: bool, knowledge: bool) -> str:
    """Pick the extraction prompt covering exactly the searches that are needed."""

    if web and not knowledge:
        return SEARCH_SUMMARY_PROMPT_WEB_ONLY
    if knowledge and not web:
        return SEARCH_SUMMARY_PROMPT_KNOWLEDGE_ONLY
    return SEARCH_SUMMARY_PROMPT


def build_conversation_block(turns: list[tuple[str, str]]) -> str:
    lines = [f"{role}: {content}" for role, content in turns if content]
    return "<conversation>\n" + "\n".join(lines) + "\n</conversation>"
