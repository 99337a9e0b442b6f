"""Tests for model capability lookups."""

from __future__ import annotations

import pytest

from parley.ai.models import get_openai_web_search_params, is_openai_web_search, is_web_search_model
from parley.ai.types import Assistant, Model


@pytest.mark.parametrize(
    ("model_id", "expected"),
    [
        ("gpt-4o-search-preview", True),
        ("gpt-4o-mini-search-preview-2025-03-11", True),
        ("gpt-4o", False),
    ],
)
def test_is_openai_web_search(model_id: str, expected: bool) -> None:
    assert is_openai_web_search(Model(id=model_id, provider="openai")) is expected


def test_is_web_search_model_by_provider() -> None:
    assert is_web_search_model(Model(id="hunyuan-pro", provider="hunyuan"))
    assert not is_web_search_model(Model(id="hunyuan-lite", provider="hunyuan"))
    assert is_web_search_model(Model(id="qwen-max-latest", provider="dashscope"))
    assert is_web_search_model(Model(id="anything", provider="openrouter"))
    assert not is_web_search_model(Model(id="llama3", provider="ollama"))
    assert not is_web_search_model(None)


def test_params_empty_unless_assistant_enables_search() -> None:
    model = Model(id="qwen-plus", provider="dashscope")

    assert get_openai_web_search_params(Assistant(enable_web_search=False), model) == {}
    assert get_openai_web_search_params(Assistant(enable_web_search=True), model) == {
        "enable_search": True,
        "search_options": {"forced_search": True},
    }


def test_params_for_openai_search_models() -> None:
    model = Model(id="gpt-4o-search-preview", provider="openai")

    params = get_openai_web_search_params(Assistant(enable_web_search=True), model)

    assert params == {"web_search_options": {}}


def test_model_name_defaults_to_id() -> None:
    assert Model(id="gpt-4o", provider="openai").name == "gpt-4o"
