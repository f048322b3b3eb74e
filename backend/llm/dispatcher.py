"""Fan per-cluster annotation tasks out over a bounded worker pool."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

import structlog

from backend.llm.annotator import STATUS_ERROR, AnnotationAttemptResult
from backend.llm.errors import ConfigurationError

logger = logging.getLogger("smartanno.dispatch")
events = structlog.get_logger("smartanno.dispatch")

ClusterTask = Callable[[str, Sequence[str]], AnnotationAttemptResult]
ProgressCallback = Callable[[int, int, str], None]


def select_clusters(
    gene_lists: Mapping[str, Sequence[str]],
    selected_clusters: Iterable[object] | str | int | None = None,
) -> dict[str, list[str]]:
    """Restrict ``gene_lists`` to ``selected_clusters``.

    Unknown IDs are reported with a warning and skipped; if none of the
    requested IDs exist a ConfigurationError is raised.
    """

    if selected_clusters is None:
        return {str(key): list(genes) for key, genes in gene_lists.items()}

    if isinstance(selected_clusters, bytes):
        selected_clusters = selected_clusters.decode()
    if isinstance(selected_clusters, str) or not isinstance(selected_clusters, Iterable):
        selected_clusters = [selected_clusters]
    requested = [str(cluster) for cluster in selected_clusters]
    available = {str(key): key for key in gene_lists}
    valid = [cluster for cluster in dict.fromkeys(requested) if cluster in available]
    if not valid:
        raise ConfigurationError(
            f"No valid cluster is available for processing: {', '.join(requested) or 'none requested'}"
        )

    missing = [cluster for cluster in dict.fromkeys(requested) if cluster not in available]
    if missing:
        logger.warning("The following clusters do not exist: %s", ", ".join(missing))

    return {cluster: list(gene_lists[available[cluster]]) for cluster in valid}


def dispatch_clusters(
    gene_lists: Mapping[str, Sequence[str]],
    task: ClusterTask,
    *,
    workers: int = 6,
    submission_delay: float = 0.3,
    model_name: str | None = None,
    progress: ProgressCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, AnnotationAttemptResult]:
    """Run ``task(cluster_id, genes)`` for every cluster and collect the results.

    Submissions are paced by ``submission_delay`` seconds. The call returns
    once every cluster has reached a terminal result; results are keyed by
    cluster ID. A task that raises is recorded as an error result for its
    cluster instead of aborting the batch.
    """

    total = len(gene_lists)
    results: dict[str, AnnotationAttemptResult] = {}
    if total == 0:
        return results

    def run(cluster_id: str, genes: Sequence[str]) -> AnnotationAttemptResult:
        with structlog.contextvars.bound_contextvars(cluster_id=cluster_id, model=model_name):
            return task(cluster_id, genes)

    pool_size = max(1, min(int(workers), total))
    events.info("dispatch.started", clusters=total, workers=pool_size, model=model_name)

    with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="smartanno") as pool:
        futures: dict[Future[AnnotationAttemptResult], str] = {}
        for cluster_id, genes in gene_lists.items():
            if submission_delay > 0:
                sleep(submission_delay)
            futures[pool.submit(run, str(cluster_id), list(genes))] = str(cluster_id)

        for done, future in enumerate(as_completed(futures), start=1):
            cluster_id = futures[future]
            try:
                results[cluster_id] = future.result()
            except Exception as exc:
                logger.exception("Annotation task for cluster %s raised", cluster_id)
                results[cluster_id] = AnnotationAttemptResult(
                    cluster_id=cluster_id,
                    status=STATUS_ERROR,
                    message=f"Task failed: {exc}",
                )
            if progress is not None:
                progress(done, total, cluster_id)

    events.info(
        "dispatch.finished",
        clusters=total,
        succeeded=sum(result.succeeded for result in results.values()),
        model=model_name,
    )
    return results


__all__ = ["ClusterTask", "ProgressCallback", "dispatch_clusters", "select_clusters"]
