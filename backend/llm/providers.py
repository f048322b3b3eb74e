"""HTTP request builders for the supported provider formats."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from backend.llm.routing import ProviderFormat

logger = logging.getLogger("smartanno.providers")

ANTHROPIC_VERSION = "2023-06-01"
VALID_REASONING_EFFORTS = ("minimal", "low", "medium", "high")
VALID_VERBOSITY = ("low", "medium", "high")
DEFAULT_REASONING_EFFORT = "medium"
DEFAULT_VERBOSITY = "medium"
MIN_OUTPUT_TOKENS = 3000
DEFAULT_OUTPUT_TOKENS = 5000


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any] = field(default_factory=dict)


def endpoint(base_url: str, path: str) -> str:
    """Join ``base_url`` and a ``/v1/...`` path without doubling ``/v1``."""

    base = (base_url or "").rstrip("/")
    if base.endswith("/v1") and path.startswith("/v1/"):
        base = base[: -len("/v1")]
    return f"{base}{path}"


def validate_reasoning_effort(value: str | None) -> str:
    if value in VALID_REASONING_EFFORTS:
        return value
    logger.warning(
        "Invalid reasoning_effort %r; using %r instead.", value, DEFAULT_REASONING_EFFORT
    )
    return DEFAULT_REASONING_EFFORT


def validate_verbosity(value: str | None) -> str:
    if value in VALID_VERBOSITY:
        return value
    logger.warning("Invalid verbosity %r; using %r instead.", value, DEFAULT_VERBOSITY)
    return DEFAULT_VERBOSITY


def output_token_budget(max_tokens: int | None) -> int:
    """Token budget for the responses API, which needs room for reasoning."""

    if max_tokens is None or max_tokens <= 0:
        return DEFAULT_OUTPUT_TOKENS
    return max(max_tokens, MIN_OUTPUT_TOKENS)


def _chat_request(
    base_url: str, api_key: str, model: str, prompt: str, max_tokens: int, temperature: float
) -> ProviderRequest:
    return ProviderRequest(
        url=endpoint(base_url, "/v1/chat/completions"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        body={
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        },
    )


def build_request(
    api_format: ProviderFormat,
    *,
    model: str,
    prompt: str,
    api_key: str,
    base_url: str,
    max_tokens: int,
    temperature: float,
    reasoning_effort: str | None = DEFAULT_REASONING_EFFORT,
    verbosity: str | None = DEFAULT_VERBOSITY,
) -> ProviderRequest:
    """Return the URL, headers and JSON body for one provider call."""

    api_format = ProviderFormat(api_format)

    if api_format is ProviderFormat.CLAUDE:
        return ProviderRequest(
            url=endpoint(base_url, "/v1/messages"),
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            body={
                "model": model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    if api_format is ProviderFormat.RESPONSES:
        return ProviderRequest(
            url=endpoint(base_url, "/v1/responses"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            body={
                "model": model,
                "input": prompt,
                "reasoning": {"effort": validate_reasoning_effort(reasoning_effort)},
                "text": {"verbosity": validate_verbosity(verbosity)},
                "max_output_tokens": output_token_budget(max_tokens),
            },
        )

    # Gemini goes through OpenAI-compatible gateways.
    return _chat_request(base_url, api_key, model, prompt, max_tokens, temperature)


__all__ = [
    "ANTHROPIC_VERSION",
    "ProviderRequest",
    "build_request",
    "endpoint",
    "output_token_budget",
    "validate_reasoning_effort",
    "validate_verbosity",
]
