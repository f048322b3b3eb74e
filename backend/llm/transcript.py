"""Append-only, human-readable transcript of provider requests and responses."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

PROMPT_PREVIEW_CHARS = 200
RESPONSE_PREVIEW_CHARS = 500


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class TranscriptLog:
    """Plain-text request/response log shared by concurrent cluster tasks.

    Every entry is written with a single ``write`` call while holding a lock,
    so blocks from different worker threads never interleave.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _append(self, text: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(text)

    def write_header(
        self,
        *,
        models: Iterable[str],
        background: str | None,
        parameters: Mapping[str, Any],
    ) -> None:
        param_lines = "\n".join(f"  {key}: {value}" for key, value in parameters.items())
        self._append(
            "########################################\n"
            f"Run started: {_now()}\n"
            f"Models: {', '.join(models)}\n"
            f"Background: {background or ''}\n"
            f"Parameters:\n{param_lines}\n"
            "########################################\n\n"
        )

    def log_request(
        self,
        *,
        cluster_id: str,
        model: str,
        api_format: str,
        temperature: float,
        max_tokens: int,
        prompt: str,
    ) -> None:
        self._append(
            f"[REQUEST] {_now()}\n"
            f"Cluster: {cluster_id}\n"
            f"Model: {model}\n"
            f"API Format: {api_format}\n"
            f"Temperature: {temperature}\n"
            f"Max Tokens: {max_tokens}\n"
            f"Prompt: {prompt[:PROMPT_PREVIEW_CHARS]}...\n"
            "---\n"
        )

    def log_response(
        self,
        *,
        cluster_id: str,
        success: bool,
        content: str | None = None,
        error: str | None = None,
    ) -> None:
        preview = (content or "")[:RESPONSE_PREVIEW_CHARS] if success else f"ERROR: {error}"
        self._append(
            f"[RESPONSE] {_now()}\n"
            f"Cluster: {cluster_id}\n"
            f"Success: {success}\n"
            f"Content: {preview}...\n"
            "========================================\n\n"
        )


__all__ = ["TranscriptLog"]
