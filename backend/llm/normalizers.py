"""Normalise provider response bodies into a single plain-text answer.

Every extractor takes an already-parsed JSON body and returns either the
answer text or :data:`EXTRACTION_FAILED`. Extractors never raise on missing or
unexpected fields; each one walks an ordered chain of candidate shapes and
stops at the first that yields text.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from enum import Enum
from typing import Any

from backend.llm.response_shapes import content_fields, dig, is_opaque_id, matches
from backend.llm.routing import ProviderFormat

logger = logging.getLogger("smartanno.normalizers")


class ExtractionFailure(Enum):
    EXTRACTION_FAILED = "Unable to extract response content"


EXTRACTION_FAILED = ExtractionFailure.EXTRACTION_FAILED

ExtractionResult = str | ExtractionFailure
Extractor = Callable[[Any], ExtractionResult]

_THINK_TAGS = re.compile(r"<think>(.*?)</think>", re.IGNORECASE | re.DOTALL)
_FINAL_ANSWER = re.compile(r".*Final answer:\s*(.*)$", re.IGNORECASE | re.DOTALL)
_POPULATION_LINE = re.compile(r"^Population\s+\d+:\s*(.+)$", re.IGNORECASE)


def _text(value: Any, *, min_length: int = 1) -> str | None:
    if isinstance(value, str) and len(value.strip()) >= min_length:
        return value
    return None


def _log_structure(provider: str, payload: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG) and isinstance(payload, dict):
        logger.debug("%s response fields: %s", provider, ", ".join(sorted(payload)))


def _first_long_string(payload: dict[str, Any]) -> str | None:
    for _, value in content_fields(payload):
        text = _text(value, min_length=11)
        if text is not None and not is_opaque_id(text):
            return text
    return None


def convert_gpt5_format(content: Any) -> Any:
    """Rewrite reasoning-model output into the ``>label<`` convention.

    Line endings are normalised, a reasoning preamble ending in
    ``Final answer:`` is dropped when an answer follows it, and
    ``Population <n>: <label>`` lines become ``><label><``. Non-string or
    empty input is returned unchanged.
    """

    if not isinstance(content, str) or not content:
        return content

    content = re.sub(r"\r\n?", "\n", content)

    match = _FINAL_ANSWER.match(content)
    if match and match.group(1).strip():
        content = match.group(1).strip()

    if re.match(r"^\s*>", content) and re.search(r"<\s*$", content):
        return content

    converted = []
    for line in content.split("\n"):
        population = _POPULATION_LINE.match(line)
        converted.append(f">{population.group(1)}<" if population else line)
    return "\n".join(converted)


# OpenAI chat-completions ------------------------------------------------------


def _finish_reason_placeholder(finish_reason: Any) -> str:
    if finish_reason == "length":
        return "Response was truncated due to length limit. No content was generated."
    if finish_reason == "content_filter":
        return "Response was filtered due to content policy."
    return f"No content generated. Finish reason: {finish_reason or 'unknown'}"


def _join_parts(parts: Any) -> str | None:
    if not isinstance(parts, list):
        return None
    texts = [part["text"] for part in parts if matches(part, "text")]
    return "\n".join(texts) if texts else None


def _from_openai_message(choice: dict[str, Any]) -> str | None:
    message = choice["message"]
    content = _text(message.get("content")) or _join_parts(message.get("content"))

    if matches(message, "reasoning_content"):
        combined = (
            f"Reasoning process: {message['reasoning_content']}\n\n"
            f"Final answer: {content or ''}"
        )
        return convert_gpt5_format(combined)

    if content is not None:
        return content

    if "content" in message:
        for key, value in message.items():
            if key in ("role", "content"):
                continue
            text = _text(value)
            if text is not None:
                return text
        return _finish_reason_placeholder(choice.get("finish_reason"))
    return None


def _from_openai_choice(choice: Any) -> str | None:
    if isinstance(choice, str):
        return _text(choice)
    if not isinstance(choice, dict):
        return None

    if isinstance(choice.get("message"), dict):
        text = _from_openai_message(choice)
        if text is not None:
            return text

    for key in ("text", "content"):
        if matches(choice, key):
            return choice[key]

    for _, value in content_fields(choice):
        text = _text(value, min_length=6)
        if text is not None:
            return text
        if matches(value, "content"):
            return value["content"]
    return None


def extract_openai_content(payload: Any) -> ExtractionResult:
    """Extract the answer from an OpenAI chat-completions style body."""

    if not isinstance(payload, dict):
        return EXTRACTION_FAILED
    _log_structure("openai", payload)

    if matches(payload, "choices", 0, leaf="any"):
        text = _from_openai_choice(payload["choices"][0])
        if text is not None:
            return text

    for key in ("response", "text", "content"):
        if matches(payload, key):
            return payload[key]

    text = _first_long_string(payload)
    return text if text is not None else EXTRACTION_FAILED


# Anthropic messages -----------------------------------------------------------


def _strip_think_tags(text: str) -> str:
    cleaned = _THINK_TAGS.sub("", text)
    return " ".join(cleaned.split())


def extract_claude_content(payload: Any) -> ExtractionResult:
    """Extract the answer from an Anthropic messages body.

    ``content`` is either a plain string or a list of content blocks; the
    first block carrying text is used. ``<think>`` spans are removed and
    whitespace collapsed.
    """

    if not isinstance(payload, dict):
        return EXTRACTION_FAILED
    _log_structure("claude", payload)

    content = payload.get("content")
    candidates: list[str] = []
    if matches(payload, "content"):
        candidates.append(content)
    elif isinstance(content, list):
        for block in content:
            if isinstance(block, str):
                candidates.append(block)
            elif matches(block, "text"):
                candidates.append(block["text"])

    for candidate in candidates:
        cleaned = _strip_think_tags(candidate)
        if cleaned:
            return cleaned
    return EXTRACTION_FAILED


# Google Gemini ----------------------------------------------------------------

_GATEWAY_PATHS: tuple[tuple[str | int, ...], ...] = (
    ("choices", 0, "message", "content"),
    ("choices", 0, "text"),
    ("choices", 0, "content"),
)


def _gemini_parts_text(parts: Any) -> str | None:
    if not isinstance(parts, list):
        return None
    answer_parts = [part for part in parts if isinstance(part, dict) and not part.get("thought")]
    for part in answer_parts or parts:
        if matches(part, "text"):
            return part["text"]
    return None


def extract_gemini_content(payload: Any) -> ExtractionResult:
    """Extract the answer from a Gemini body (gateway or native shape)."""

    if not isinstance(payload, dict):
        return EXTRACTION_FAILED
    _log_structure("gemini", payload)

    for path in _GATEWAY_PATHS:
        if matches(payload, *path):
            return dig(payload, *path)

    candidate = dig(payload, "candidates", 0)
    if isinstance(candidate, dict):
        text = _gemini_parts_text(dig(candidate, "content", "parts"))
        if text is not None:
            return convert_gpt5_format(text)
        text = _gemini_parts_text(candidate.get("parts"))
        if text is not None:
            return text
        if matches(candidate, "text"):
            return candidate["text"]

    for key in ("text", "content"):
        if matches(payload, key):
            return payload[key]

    text = _first_long_string(payload)
    return text if text is not None else EXTRACTION_FAILED


# OpenAI responses -------------------------------------------------------------


def _accept(value: Any, *, min_length: int = 1) -> str | None:
    text = _text(value, min_length=min_length)
    if text is None or is_opaque_id(text):
        return None
    return text


def _text_from_items(items: Any, *, min_length: int = 1) -> str | None:
    """Scan a string, a text/content object or a list of either."""

    if isinstance(items, dict):
        items = [items]
    elif not isinstance(items, list):
        return _accept(items, min_length=min_length)

    for item in items:
        if isinstance(item, dict):
            for key in ("text", "content"):
                text = _accept(item.get(key), min_length=min_length)
                if text is not None:
                    return text
            nested = item.get("content")
            if isinstance(nested, list):
                text = _text_from_items(nested, min_length=min_length)
                if text is not None:
                    return text
        else:
            text = _accept(item, min_length=min_length)
            if text is not None:
                return text
    return None


def _responses_output_text(payload: dict[str, Any]) -> str | None:
    value = payload.get("output_text")
    if isinstance(value, list):
        texts = [item for item in value if _accept(item)]
        return "\n".join(texts) if texts else None
    return _accept(value)


def _responses_choices(payload: dict[str, Any]) -> str | None:
    if matches(payload, "choices", 0, "message", "content"):
        return _accept(payload["choices"][0]["message"]["content"])
    return None


def _responses_output(payload: dict[str, Any]) -> str | None:
    output = payload.get("output")
    if not isinstance(output, list):
        return _text_from_items(output) if output is not None else None

    rows = [row for row in output if isinstance(row, dict)]
    message_rows = [row for row in rows if row.get("type") in ("message", None)]
    selected = message_rows or [row for row in rows if row.get("type") == "reasoning"]
    logger.debug(
        "responses output: %d rows, %d message rows, using %d",
        len(rows),
        len(message_rows),
        len(selected),
    )

    for row in selected:
        text = _text_from_items(row.get("content"))
        if text is not None:
            return text
    for row in selected:
        text = _text_from_items(row.get("summary"))
        if text is not None:
            return text

    strings = [item for item in output if _accept(item)]
    return "\n".join(strings) if strings else None


def _responses_text_field(payload: dict[str, Any]) -> str | None:
    field = payload.get("text")
    if isinstance(field, list):
        texts = [item for item in field if _accept(item)]
        return "\n".join(texts) if texts else None
    if not isinstance(field, dict):
        return _accept(field)
    text = _accept(field.get("content"))
    if text is not None:
        return text
    return _text_from_items(field.get("format")) if "format" in field else None


def _responses_reasoning(payload: dict[str, Any]) -> str | None:
    reasoning = payload.get("reasoning")
    if isinstance(reasoning, dict):
        text = _accept(reasoning.get("content"))
        if text is not None:
            return text
        summary = reasoning.get("summary")
        return _text_from_items(summary) if summary is not None else None
    if isinstance(reasoning, list):
        return _text_from_items(reasoning, min_length=11)
    return _accept(reasoning)


def _responses_any_field(payload: dict[str, Any]) -> str | None:
    for _, value in content_fields(payload):
        if isinstance(value, dict):
            for _, nested in content_fields(value):
                text = _accept(nested, min_length=11)
                if text is not None:
                    return text
            continue
        text = _accept(value, min_length=11)
        if text is not None:
            return text
    return None


_RESPONSES_CANDIDATES: tuple[Callable[[dict[str, Any]], str | None], ...] = (
    _responses_output_text,
    _responses_choices,
    _responses_output,
    _responses_text_field,
    _responses_reasoning,
    _responses_any_field,
)


def extract_responses_content(payload: Any) -> ExtractionResult:
    """Extract the answer from an OpenAI ``/v1/responses`` body.

    Candidates are tried in order: ``output_text``, chat-style ``choices``,
    the ``output`` item list (message items, else reasoning items), the
    ``text`` field, the ``reasoning`` field, then any remaining content-like
    field. Reasoning item identifiers (``rs_...``) are never returned as text.
    """

    if not isinstance(payload, dict):
        return EXTRACTION_FAILED
    _log_structure("responses", payload)

    if payload.get("status") == "incomplete":
        logger.warning(
            "Responses payload is incomplete (reason: %s)",
            dig(payload, "incomplete_details", "reason") or "unknown",
        )

    for candidate in _RESPONSES_CANDIDATES:
        text = candidate(payload)
        if text is not None:
            return convert_gpt5_format(text)
    return EXTRACTION_FAILED


# Shared helpers ---------------------------------------------------------------

_EXTRACTORS: dict[ProviderFormat, Extractor] = {
    ProviderFormat.OPENAI: extract_openai_content,
    ProviderFormat.CLAUDE: extract_claude_content,
    ProviderFormat.GEMINI: extract_gemini_content,
    ProviderFormat.RESPONSES: extract_responses_content,
}


def get_extractor(api_format: ProviderFormat) -> Extractor:
    return _EXTRACTORS[ProviderFormat(api_format)]


def extract_token_usage(payload: Any) -> int:
    """Return the total token count reported by any provider, or 0."""

    if not isinstance(payload, dict):
        return 0
    usage = payload.get("usage")
    if isinstance(usage, dict):
        total = usage.get("total_tokens")
        if isinstance(total, int):
            return total
        counts = [usage.get(key) for key in ("input_tokens", "output_tokens")]
        if any(isinstance(count, int) for count in counts):
            return sum(count for count in counts if isinstance(count, int))
    total = dig(payload, "usageMetadata", "totalTokenCount")
    return total if isinstance(total, int) else 0


def _join_texts(texts: list[str]) -> str | None:
    texts = [text.strip() for text in texts if text.strip()]
    return "\n".join(texts) if texts else None


def _claude_reasoning(payload: dict[str, Any]) -> str | None:
    content = payload.get("content")
    blocks = [content] if isinstance(content, str) else content if isinstance(content, list) else []
    texts: list[str] = []
    for block in blocks:
        if isinstance(block, str):
            texts.extend(_THINK_TAGS.findall(block))
        elif matches(block, "thinking"):
            texts.append(block["thinking"])
        elif matches(block, "text"):
            texts.extend(_THINK_TAGS.findall(block["text"]))
    return _join_texts(texts)


def _gemini_reasoning(payload: dict[str, Any]) -> str | None:
    parts = dig(payload, "candidates", 0, "content", "parts")
    if not isinstance(parts, list):
        return None
    return _join_texts(
        [part["text"] for part in parts if matches(part, "text") and part.get("thought")]
    )


def _responses_reasoning_summary(payload: dict[str, Any]) -> str | None:
    output = payload.get("output")
    if not isinstance(output, list):
        return None
    texts: list[str] = []
    for row in output:
        if not isinstance(row, dict) or row.get("type") != "reasoning":
            continue
        for item in row.get("summary") or []:
            text = _accept(item.get("text") if isinstance(item, dict) else item)
            if text is not None:
                texts.append(text)
    return _join_texts(texts)


def extract_reasoning_content(payload: Any, api_format: ProviderFormat) -> str | None:
    """Return the model's reasoning trace, kept apart from the answer, or None.

    Chat-style bodies carry it in ``message.reasoning_content``; Claude in
    ``thinking`` blocks or ``<think>`` spans; native Gemini in ``thought``
    parts; the responses API in reasoning item summaries.
    """

    if not isinstance(payload, dict):
        return None
    api_format = ProviderFormat(api_format)

    if matches(payload, "choices", 0, "message", "reasoning_content"):
        return payload["choices"][0]["message"]["reasoning_content"].strip() or None
    if api_format is ProviderFormat.CLAUDE:
        return _claude_reasoning(payload)
    if api_format is ProviderFormat.GEMINI:
        return _gemini_reasoning(payload)
    if api_format is ProviderFormat.RESPONSES:
        return _responses_reasoning_summary(payload)
    return None


__all__ = [
    "EXTRACTION_FAILED",
    "ExtractionFailure",
    "ExtractionResult",
    "convert_gpt5_format",
    "extract_claude_content",
    "extract_gemini_content",
    "extract_openai_content",
    "extract_reasoning_content",
    "extract_responses_content",
    "extract_token_usage",
    "get_extractor",
]
