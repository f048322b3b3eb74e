from __future__ import annotations

import pytest

from backend.llm.errors import ConfigurationError
from backend.llm.routing import ProviderFormat, route_provider


@pytest.mark.parametrize(
    ("model_name", "expected"),
    [
        ("claude-3-5-sonnet-20241022", ProviderFormat.CLAUDE),
        ("Claude-Opus", ProviderFormat.CLAUDE),
        ("gemini-2.5-pro", ProviderFormat.GEMINI),
        ("gpt-5", ProviderFormat.RESPONSES),
        ("GPT-5-mini", ProviderFormat.RESPONSES),
        ("gpt-4.1-mini", ProviderFormat.RESPONSES),
        ("gpt-4o", ProviderFormat.OPENAI),
        ("gpt-4.0", ProviderFormat.OPENAI),
        ("deepseek-r1-250120", ProviderFormat.OPENAI),
        ("", ProviderFormat.OPENAI),
    ],
)
def test_route_provider_from_model_name(model_name: str, expected: ProviderFormat) -> None:
    assert route_provider(model_name) is expected


def test_claude_wins_over_gemini_when_both_appear() -> None:
    assert route_provider("claude-via-gemini-proxy") is ProviderFormat.CLAUDE


def test_explicit_format_overrides_name() -> None:
    assert route_provider("gpt-5", "openai") is ProviderFormat.OPENAI
    assert route_provider("my-proxy-model", "CLAUDE") is ProviderFormat.CLAUDE


def test_unknown_format_raises() -> None:
    with pytest.raises(ConfigurationError, match="api_format"):
        route_provider("gpt-4o", "mistral")


def test_family_names_win_over_responses_pattern() -> None:
    assert route_provider("claude-gpt-5-proxy") is ProviderFormat.CLAUDE
    assert route_provider("gemini-gpt-4.1") is ProviderFormat.GEMINI
