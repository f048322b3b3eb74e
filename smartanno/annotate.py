"""Library entry points: annotate clusters with one model or compare several."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

import httpx
import pandas as pd

from backend.data_ingest.marker_loader import load_markers, prepare_gene_lists
from backend.llm.annotator import (
    STATUS_ERROR,
    STATUS_SUCCESS,
    AnnotationAttemptResult,
    ClusterAnnotator,
    ModelConfig,
    build_http_client,
)
from backend.llm.dispatcher import ProgressCallback, dispatch_clusters, select_clusters
from backend.llm.errors import AnnotationError, ConfigurationError
from backend.llm.labels import LabelPolicy, build_annotation_table, export_table
from backend.llm.transcript import TranscriptLog
from config.settings import Settings, get_settings

logger = logging.getLogger("smartanno")

MarkerSource = pd.DataFrame | str | Path

# Run parameters echoed in the transcript header; credentials are never logged.
_LOGGED_PARAMETERS = (
    "api_url",
    "gene_number",
    "p_value_cutoff",
    "workers",
    "max_retries",
    "time_out",
    "retry_delay",
    "temperature",
    "max_tokens",
    "reasoning_effort",
    "verbosity",
)


def resolve_settings(settings: Settings | None = None, **overrides: Any) -> Settings:
    """Apply keyword overrides (``None`` meaning "keep") on top of ``settings``."""

    unknown = sorted(set(overrides) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
    base = settings or get_settings()
    update = {key: value for key, value in overrides.items() if value is not None}
    return base.model_copy(update=update)


@contextlib.contextmanager
def _http_client(client: httpx.Client | None) -> Iterator[httpx.Client]:
    if client is not None:
        yield client
        return
    with build_http_client() as owned:
        yield owned


def _prepare_gene_lists(
    markers: MarkerSource,
    run: Settings,
    selected_clusters: Iterable[object] | None,
    extra_genes: Iterable[str] | None,
) -> dict[str, list[str]]:
    gene_lists = prepare_gene_lists(
        load_markers(markers),
        gene_number=run.gene_number,
        p_value_cutoff=run.p_value_cutoff,
        extra_genes=extra_genes,
    )
    return select_clusters(gene_lists, selected_clusters)


def _open_transcript(
    log_file: str | Path | None,
    run: Settings,
    models: Sequence[str],
    background: str | None,
) -> TranscriptLog | None:
    if log_file is None:
        return None
    transcript = TranscriptLog(log_file)
    transcript.write_header(
        models=models,
        background=background,
        parameters={name: getattr(run, name) for name in _LOGGED_PARAMETERS},
    )
    return transcript


def _run_model(
    model_config: ModelConfig,
    gene_lists: dict[str, list[str]],
    run: Settings,
    *,
    background: str | None,
    client: httpx.Client,
    transcript: TranscriptLog | None,
    progress: ProgressCallback | None,
) -> dict[str, AnnotationAttemptResult]:
    annotator = ClusterAnnotator(
        model_config, background=background, client=client, transcript=transcript
    )
    return dispatch_clusters(
        gene_lists,
        annotator.annotate_cluster,
        workers=run.workers,
        submission_delay=run.submission_delay,
        model_name=model_config.model_name,
        progress=progress,
    )


def _warn_if_all_failed(table: pd.DataFrame, model_name: str) -> None:
    if len(table) and (table["status"] != STATUS_SUCCESS).all():
        logger.warning(
            "All %d clusters failed for model %s. Please check that the API key and URL "
            "are filled in correctly.",
            len(table),
            model_name,
        )


def anno(
    markers: MarkerSource,
    *,
    background: str | None = None,
    selected_clusters: Iterable[object] | None = None,
    extra_genes: Iterable[str] | None = None,
    log_file: str | Path | None = None,
    output_csv: str | Path | None = None,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    progress: ProgressCallback | None = None,
    **overrides: Any,
) -> pd.DataFrame:
    """Annotate every cluster of ``markers`` with a single model.

    ``markers`` is a marker table (DataFrame or CSV path) as produced by
    Seurat ``FindAllMarkers`` or scanpy ``rank_genes_groups_df``. Any
    :class:`~config.settings.Settings` field can be overridden by keyword,
    e.g. ``model="gpt-5"``, ``api_key=...``, ``api_url=...``,
    ``gene_number=50``, ``workers=4``, ``max_retries=3``, ``time_out=120``,
    ``api_format="claude"``.

    Returns one row per selected cluster in :data:`OUTPUT_COLUMNS` order.
    Labels are read with the open ``>label`` policy.
    """

    run = resolve_settings(settings, **overrides)
    model_config = ModelConfig.from_settings(run, run.model)
    gene_lists = _prepare_gene_lists(markers, run, selected_clusters, extra_genes)
    transcript = _open_transcript(log_file, run, [model_config.model_name], background)

    logger.info(
        "Annotating %d clusters with %s (%s format)",
        len(gene_lists),
        model_config.model_name,
        model_config.api_format.value,
    )
    with _http_client(client) as http:
        results = _run_model(
            model_config,
            gene_lists,
            run,
            background=background,
            client=http,
            transcript=transcript,
            progress=progress,
        )

    table = build_annotation_table(
        results,
        gene_lists,
        policy=LabelPolicy.OPEN,
        preview_chars=run.content_preview_chars,
    )
    _warn_if_all_failed(table, model_config.model_name)
    if output_csv is not None:
        export_table(table, output_csv)
    return table


def multi_model_annotate(
    markers: MarkerSource,
    models: Sequence[str],
    *,
    background: str | None = None,
    selected_clusters: Iterable[object] | None = None,
    extra_genes: Iterable[str] | None = None,
    log_file: str | Path | None = None,
    output_csv: str | Path | None = None,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    progress: ProgressCallback | None = None,
    **overrides: Any,
) -> pd.DataFrame:
    """Annotate the same clusters with each model in turn and stack the tables.

    Models run one after another; clusters within a model run in parallel.
    A model whose run raises is reported as failed rows for every cluster.
    Raises AnnotationError only when no model completed its run.
    """

    model_names = [str(model) for model in (models or []) if str(model).strip()]
    if not model_names:
        raise ConfigurationError("At least one model name must be supplied.")

    run = resolve_settings(settings, **overrides)
    configs = [ModelConfig.from_settings(run, name) for name in model_names]
    gene_lists = _prepare_gene_lists(markers, run, selected_clusters, extra_genes)
    transcript = _open_transcript(log_file, run, model_names, background)

    tables: list[pd.DataFrame] = []
    completed = 0
    with _http_client(client) as http:
        for index, model_config in enumerate(configs, start=1):
            logger.info(
                "[%d/%d] Annotating %d clusters with %s (%s format)",
                index,
                len(configs),
                len(gene_lists),
                model_config.model_name,
                model_config.api_format.value,
            )
            try:
                results = _run_model(
                    model_config,
                    gene_lists,
                    run,
                    background=background,
                    client=http,
                    transcript=transcript,
                    progress=progress,
                )
                completed += 1
            except Exception as exc:
                logger.exception("Model %s failed; recording failed rows", model_config.model_name)
                results = {
                    cluster_id: AnnotationAttemptResult(
                        cluster_id=cluster_id,
                        status=STATUS_ERROR,
                        message=f"Model run failed: {exc}",
                    )
                    for cluster_id in gene_lists
                }

            table = build_annotation_table(
                results,
                gene_lists,
                policy=LabelPolicy.STRICT,
                model_name=model_config.model_name,
                preview_chars=run.content_preview_chars,
            )
            _warn_if_all_failed(table, model_config.model_name)
            tables.append(table)

    if completed == 0:
        raise AnnotationError(
            f"None of the models produced results: {', '.join(model_names)}"
        )

    combined = pd.concat(tables, ignore_index=True)
    if output_csv is not None:
        export_table(combined, output_csv)
    return combined


__all__ = ["anno", "multi_model_annotate", "resolve_settings"]
