"""Per-cluster request/retry engine for smartanno."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
import structlog

from backend.llm.normalizers import (
    EXTRACTION_FAILED,
    extract_reasoning_content,
    extract_token_usage,
    get_extractor,
)
from backend.llm.prompts import build_annotation_prompt
from backend.llm.providers import build_request, validate_reasoning_effort, validate_verbosity
from backend.llm.routing import ProviderFormat, route_provider
from backend.llm.transcript import TranscriptLog
from config.settings import Settings

logger = logging.getLogger("smartanno.llm")
events = structlog.get_logger("smartanno.llm")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

_CLIENT_ERROR_CODE = re.compile(r"(?<!\d)4\d{2}(?!\d)")


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class AttemptState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


@dataclass(frozen=True)
class ModelConfig:
    """Everything the retry engine needs to talk to one model."""

    model_name: str
    api_format: ProviderFormat
    api_key: str
    base_url: str
    max_tokens: int = 8190
    temperature: float = 0.3
    reasoning_effort: str = "medium"
    verbosity: str = "medium"
    timeout: float = 200.0
    max_retries: int = 3
    retry_delay: float = 1.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        model_name: str | None = None,
        *,
        api_format: str | None = None,
    ) -> ModelConfig:
        """Resolve a model's provider format and parameters from ``settings``.

        Raises ConfigurationError for an unknown ``api_format``.
        """

        name = model_name or settings.model
        resolved = route_provider(name, api_format if api_format is not None else settings.api_format)
        reasoning_effort = settings.reasoning_effort
        verbosity = settings.verbosity
        if resolved is ProviderFormat.RESPONSES:
            reasoning_effort = validate_reasoning_effort(reasoning_effort)
            verbosity = validate_verbosity(verbosity)
        return cls(
            model_name=name,
            api_format=resolved,
            api_key=settings.api_key,
            base_url=settings.api_url,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            reasoning_effort=reasoning_effort,
            verbosity=verbosity,
            timeout=settings.time_out,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )


@dataclass
class ProviderResponse:
    """Outcome of a single HTTP round trip."""

    success: bool
    content: str | None = None
    error: str | None = None
    status_code: int | None = None
    timed_out: bool = False
    tokens: int = 0
    think_content: str | None = None


@dataclass
class AnnotationAttemptResult:
    """Final outcome for one cluster; only the last attempt is retained."""

    cluster_id: str
    status: str
    message: str
    raw_content: str | None = None
    think_content: str | None = None
    attempts_used: int = 0
    tokens: int = 0
    timestamp: str = field(default_factory=_now)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


def is_non_retryable(response: ProviderResponse) -> bool:
    """Client errors (4xx) are not transient and must not be retried."""

    if response.timed_out:
        return False
    if response.status_code is not None and response.status_code != 200:
        return 400 <= response.status_code < 500
    return bool(_CLIENT_ERROR_CODE.search(response.error or ""))


def build_http_client(**kwargs: Any) -> httpx.Client:
    """Create the HTTP client used for provider calls; redirects are followed."""

    return httpx.Client(follow_redirects=True, **kwargs)


def _error_detail(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return response.text[:300]


class ClusterAnnotator:
    """Builds, sends and retries the annotation request for single clusters."""

    def __init__(
        self,
        model_config: ModelConfig,
        *,
        background: str | None = None,
        client: httpx.Client | None = None,
        transcript: TranscriptLog | None = None,
    ) -> None:
        self.config = model_config
        self.background = background
        self.transcript = transcript
        self._client = client or build_http_client()
        self._owns_client = client is None
        self._extract = get_extractor(model_config.api_format)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ClusterAnnotator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Public API -----------------------------------------------------------------

    def annotate_cluster(self, cluster_id: str, genes: Sequence[str]) -> AnnotationAttemptResult:
        """Annotate one cluster, retrying transient failures up to ``max_retries``."""

        cluster_id = str(cluster_id)
        prompt = build_annotation_prompt(cluster_id, genes, self.background)
        max_attempts = max(self.config.max_retries, 1)

        result = AnnotationAttemptResult(
            cluster_id=cluster_id, status=STATUS_ERROR, message="Initialization failed"
        )
        state = AttemptState.PENDING
        attempt = 0

        while state in (AttemptState.PENDING, AttemptState.FAILED_RETRYABLE):
            if state is AttemptState.FAILED_RETRYABLE:
                self._sleep(self.config.retry_delay)
            attempt += 1
            state = AttemptState.ATTEMPTING

            started = time.monotonic()
            events.info("llm.request", cluster_id=cluster_id, attempt=attempt, model=self.config.model_name)
            response = self.call_model(prompt, cluster_id=cluster_id)
            elapsed = round(time.monotonic() - started, 1)

            if response.success:
                state = AttemptState.SUCCEEDED
                result = AnnotationAttemptResult(
                    cluster_id=cluster_id,
                    status=STATUS_SUCCESS,
                    message="OK",
                    raw_content=response.content,
                    think_content=response.think_content,
                    attempts_used=attempt,
                    tokens=response.tokens,
                )
                events.info("llm.response", cluster_id=cluster_id, attempt=attempt, elapsed_s=elapsed)
                continue

            if response.timed_out:
                message = f"Timeout on attempt {attempt}"
            else:
                message = f"Attempt {attempt} failed: {response.error}"

            if is_non_retryable(response):
                message = f"{message} (No retry)"
                state = AttemptState.FAILED_TERMINAL
            elif attempt >= max_attempts:
                state = AttemptState.FAILED_TERMINAL
            else:
                state = AttemptState.FAILED_RETRYABLE

            result = AnnotationAttemptResult(
                cluster_id=cluster_id,
                status=STATUS_ERROR,
                message=message,
                attempts_used=attempt,
            )
            events.warning(
                "llm.request_failed",
                cluster_id=cluster_id,
                attempt=attempt,
                max_attempts=max_attempts,
                elapsed_s=elapsed,
                state=state.value,
                error=message,
            )

        return result

    def call_model(self, prompt: str, *, cluster_id: str = "") -> ProviderResponse:
        """Send one provider request and normalise its outcome."""

        cfg = self.config
        request = build_request(
            cfg.api_format,
            model=cfg.model_name,
            prompt=prompt,
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            max_tokens=cfg.max_tokens,
            temperature=cfg.temperature,
            reasoning_effort=cfg.reasoning_effort,
            verbosity=cfg.verbosity,
        )
        if self.transcript is not None:
            self.transcript.log_request(
                cluster_id=cluster_id,
                model=cfg.model_name,
                api_format=cfg.api_format.value,
                temperature=cfg.temperature,
                max_tokens=cfg.max_tokens,
                prompt=prompt,
            )

        response = self._post(request.url, request.headers, request.body)

        if self.transcript is not None:
            self.transcript.log_response(
                cluster_id=cluster_id,
                success=response.success,
                content=response.content,
                error=response.error,
            )
        return response

    # Internal helpers -----------------------------------------------------------

    def _post(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> ProviderResponse:
        try:
            http_response = self._client.post(
                url, headers=headers, json=body, timeout=self.config.timeout
            )
        except httpx.TimeoutException as exc:
            return ProviderResponse(success=False, error=f"Timeout: {exc}", timed_out=True)
        except httpx.HTTPError as exc:
            return ProviderResponse(success=False, error=f"Request error: {exc}")

        status_code = http_response.status_code
        if status_code != 200:
            detail = _error_detail(http_response)
            logger.warning("API error HTTP %s from %s: %s", status_code, url, detail)
            return ProviderResponse(
                success=False, error=f"HTTP {status_code} : {detail}", status_code=status_code
            )

        try:
            payload = http_response.json()
        except ValueError:
            return ProviderResponse(
                success=False, error="Response body is not valid JSON", status_code=status_code
            )

        text = self._extract(payload)
        if text is EXTRACTION_FAILED:
            fields = ", ".join(sorted(payload)) if isinstance(payload, dict) else type(payload).__name__
            logger.warning("Content extraction failed; response structure: %s", fields)
            return ProviderResponse(
                success=False,
                error="Unable to extract valid content from API response",
                status_code=status_code,
            )

        return ProviderResponse(
            success=True,
            content=text,
            status_code=status_code,
            tokens=extract_token_usage(payload),
            think_content=extract_reasoning_content(payload, self.config.api_format),
        )

    def _sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def annotate_cluster(
    cluster_id: str,
    genes: Sequence[str],
    model_config: ModelConfig,
    *,
    background: str | None = None,
    client: httpx.Client | None = None,
    transcript: TranscriptLog | None = None,
) -> AnnotationAttemptResult:
    """Annotate one cluster with a short-lived :class:`ClusterAnnotator`."""

    with ClusterAnnotator(
        model_config, background=background, client=client, transcript=transcript
    ) as annotator:
        return annotator.annotate_cluster(cluster_id, genes)


__all__ = [
    "AnnotationAttemptResult",
    "AttemptState",
    "ClusterAnnotator",
    "ModelConfig",
    "ProviderResponse",
    "STATUS_ERROR",
    "STATUS_SUCCESS",
    "annotate_cluster",
    "build_http_client",
    "is_non_retryable",
]
