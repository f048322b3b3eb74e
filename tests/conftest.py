from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import httpx
import pandas as pd
import pytest

from config.settings import Settings

API_URL = "https://api.example.com"

Outcome = httpx.Response | Exception
Handler = Callable[[str, dict[str, Any]], Outcome]


def json_response(status_code: int, payload: Any) -> httpx.Response:
    return httpx.Response(status_code, json=payload, request=httpx.Request("POST", API_URL))


def chat_completion(content: str, *, total_tokens: int = 42) -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
        "usage": {"total_tokens": total_tokens},
    }


class FakeClient:
    """Stands in for ``httpx.Client``; records every POST it receives."""

    def __init__(self, handler: Handler | list[Outcome]) -> None:
        if isinstance(handler, list):
            queue = list(handler)
            self._lock_queue = threading.Lock()

            def pop(url: str, body: dict[str, Any]) -> Outcome:
                with self._lock_queue:
                    return queue.pop(0)

            handler = pop
        self._handler = handler
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        with self._lock:
            self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        outcome = self._handler(url, json or {})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-key",
        api_url=API_URL,
        model="deepseek-r1-250120",
        workers=2,
        submission_delay=0,
        retry_delay=0,
        max_retries=3,
        time_out=5,
    )


@pytest.fixture
def markers() -> pd.DataFrame:
    """Seurat-style FindAllMarkers export with three clusters."""

    rows = [
        ("0", "CD3E", 1e-20, 3.1),
        ("0", "CD2", 1e-15, 2.5),
        ("0", "IL7R", 1e-10, 1.9),
        ("0", "ACTB", 0.2, 4.0),
        ("1", "MS4A1", 1e-30, 4.2),
        ("1", "CD79A", 1e-25, 3.8),
        ("2", "LYZ", 1e-40, 5.0),
        ("2", "S100A8", 1e-35, 4.7),
    ]
    return pd.DataFrame(rows, columns=["cluster", "gene", "p_val_adj", "avg_log2FC"])
