"""Provider format detection for model identifiers."""

from __future__ import annotations

import re
from enum import Enum

from backend.llm.errors import ConfigurationError


class ProviderFormat(str, Enum):
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    RESPONSES = "responses"


# GPT-4.1 and later, plus the GPT-5 family, speak the /v1/responses dialect.
_RESPONSES_PATTERN = re.compile(r"gpt-4\.[1-9]|gpt-5", re.IGNORECASE)


def route_provider(model_name: str, api_format: str | None = None) -> ProviderFormat:
    """Return the provider format to use for ``model_name``.

    An explicit ``api_format`` wins and must name one of the known formats.
    Otherwise the model name is matched case-insensitively: ``claude`` and
    ``gemini`` family names first, then the responses-format naming pattern,
    falling back to the OpenAI chat-completions format.
    """

    if api_format is not None:
        try:
            return ProviderFormat(str(api_format).lower())
        except ValueError as exc:
            allowed = ", ".join(repr(fmt.value) for fmt in ProviderFormat)
            raise ConfigurationError(
                f"api_format must be one of: {allowed}; got {api_format!r}"
            ) from exc

    lowered = (model_name or "").lower()
    if "claude" in lowered:
        return ProviderFormat.CLAUDE
    if "gemini" in lowered:
        return ProviderFormat.GEMINI
    if _RESPONSES_PATTERN.search(lowered):
        return ProviderFormat.RESPONSES
    return ProviderFormat.OPENAI


__all__ = ["ProviderFormat", "route_provider"]
