"""JSON-schema shape candidates for provider response bodies.

Each provider response is decoded by trying an ordered list of shape schemas
against the parsed body. A schema only describes *where* a usable string
lives; pulling the value out once the schema matched is done with :func:`dig`.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from jsonschema import Draft202012Validator

NON_EMPTY_STRING: dict[str, Any] = {"type": "string", "minLength": 1}
LONG_STRING: dict[str, Any] = {"type": "string", "minLength": 11}

# Reasoning item identifiers returned by the responses API, e.g. "rs_68a1f0c2".
OPAQUE_ID_PATTERN = re.compile(r"^rs_[A-Za-z0-9]+$")

# Top-level fields that never carry model output.
METADATA_FIELDS = frozenset(
    {
        "id",
        "object",
        "created",
        "created_at",
        "status",
        "model",
        "usage",
        "usageMetadata",
        "modelVersion",
        "responseId",
        "error",
        "incomplete_details",
        "system_fingerprint",
        "background",
        "content_filters",
        "instructions",
        "max_output_tokens",
        "max_tool_calls",
        "parallel_tool_calls",
        "previous_response_id",
        "prompt_cache_key",
        "safety_identifier",
        "service_tier",
        "store",
        "temperature",
        "tool_choice",
        "tools",
        "top_p",
        "truncation",
        "user",
        "metadata",
        "role",
        "type",
        "stop_reason",
        "stop_sequence",
        "finish_reason",
    }
)


def path_schema(*path: str | int, leaf: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a schema requiring ``leaf`` at ``path``.

    String segments are object keys, integer segments are array positions.
    """

    schema: dict[str, Any] = dict(leaf if leaf is not None else NON_EMPTY_STRING)
    for key in reversed(path):
        if isinstance(key, int):
            schema = {
                "type": "array",
                "minItems": key + 1,
                "prefixItems": [{} for _ in range(key)] + [schema],
            }
        else:
            schema = {"type": "object", "required": [key], "properties": {key: schema}}
    return schema


@lru_cache(maxsize=None)
def _validator(path: tuple[str | int, ...], leaf_key: str) -> Draft202012Validator:
    leaf = {"string": NON_EMPTY_STRING, "long": LONG_STRING, "any": {}}[leaf_key]
    return Draft202012Validator(path_schema(*path, leaf=leaf))


def matches(payload: Any, *path: str | int, leaf: str = "string") -> bool:
    """Return True when ``payload`` has a value of kind ``leaf`` at ``path``.

    ``leaf`` is ``"string"`` (non-empty string), ``"long"`` (longer than ten
    characters) or ``"any"`` (present, any type).
    """

    return _validator(tuple(path), leaf).is_valid(payload)


def dig(payload: Any, *path: str | int) -> Any:
    """Follow ``path`` through nested dicts/lists, returning None when it breaks off."""

    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
    return current


def is_opaque_id(value: str) -> bool:
    return bool(OPAQUE_ID_PATTERN.match(value.strip()))


def content_fields(payload: dict[str, Any]) -> list[tuple[str, Any]]:
    """Return the (key, value) pairs of ``payload`` that may hold output text."""

    return [(key, value) for key, value in payload.items() if key not in METADATA_FIELDS]


__all__ = [
    "LONG_STRING",
    "METADATA_FIELDS",
    "NON_EMPTY_STRING",
    "OPAQUE_ID_PATTERN",
    "content_fields",
    "dig",
    "is_opaque_id",
    "matches",
    "path_schema",
]
