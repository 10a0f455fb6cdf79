# tests/test_options.py
from __future__ import annotations

from chatgate.providers.options import provider_options, supports_system_prompt


def test_openai_reasoning_models() -> None:
    assert provider_options("openai", "o4-mini", "high") == {"reasoning_effort": "high"}
    assert provider_options("i3-openai", "o4-mini", "low") == {"reasoning_effort": "low"}
    assert provider_options("openai", "gpt-4o-mini", "high") == {}


def test_anthropic_thinking_budget() -> None:
    opts = provider_options("anthropic", "claude-sonnet-4-20250514", "medium")
    assert opts == {"thinking": {"type": "enabled", "budget_tokens": 6000}}


def test_openrouter_reasoning() -> None:
    assert provider_options("openrouter", "google/gemini-2.5-flash", "low") == {"reasoning": {"effort": "low"}}


def test_effort_off_or_missing() -> None:
    assert provider_options("openai", "o4-mini", "off") == {}
    assert provider_options("openai", "o4-mini", None) == {}
    assert provider_options("mystery", "o4-mini", "high") == {}


def test_image_output_models() -> None:
    opts = provider_options("google", "gemini-2.0-flash-image-generation", None)
    assert opts == {"modalities": ["text", "image"]}
    assert not supports_system_prompt("gemini-2.0-flash-image-generation")
    assert supports_system_prompt("gpt-4o-mini")
