"""Scanpy/AnnData integration helpers for smartanno."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import numpy as np
import pandas as pd
from anndata import AnnData

from backend.data_ingest.marker_loader import MARKER_COLUMNS
from smartanno.annotate import anno

try:  # Optional dependency; only needed when we must compute marker rankings.
    import scanpy as sc
except ImportError:  # pragma: no cover - handled in annotate_anndata
    sc = None

_RANKING_FIELDS = ("names", "pvals_adj", "logfoldchanges")


def _ensure_rankings(adata: AnnData, cluster_key: str, *, method: str = "wilcoxon") -> None:
    """Compute rank_genes_groups if missing or for a different cluster key."""

    rankings = adata.uns.get("rank_genes_groups")
    params = (rankings or {}).get("params", {})
    if rankings is not None and params.get("groupby") == cluster_key:
        return

    if sc is None:
        raise ImportError(
            "scanpy is required to compute marker rankings. Install scanpy or "
            "precompute `rank_genes_groups` for the AnnData object."
        )

    sc.tl.rank_genes_groups(adata, groupby=cluster_key, method=method)


def _per_group(values: Any, field: str) -> dict[str, list[Any]]:
    if isinstance(values, np.ndarray) and values.dtype.names:
        return {str(group): list(values[group]) for group in values.dtype.names}
    if isinstance(values, Mapping):
        return {str(group): list(items) for group, items in values.items()}
    raise ValueError(f"Unsupported structure for `rank_genes_groups['{field}']`.")


def markers_from_anndata(adata: AnnData) -> pd.DataFrame:
    """Flatten ``adata.uns['rank_genes_groups']`` into a marker table."""

    rankings = adata.uns.get("rank_genes_groups")
    missing = [field for field in _RANKING_FIELDS if rankings is None or field not in rankings]
    if missing:
        raise ValueError(
            "AnnData object is missing `rank_genes_groups` results "
            f"({', '.join(missing)}). Run scanpy.tl.rank_genes_groups beforehand."
        )

    names = _per_group(rankings["names"], "names")
    pvals = _per_group(rankings["pvals_adj"], "pvals_adj")
    lfcs = _per_group(rankings["logfoldchanges"], "logfoldchanges")

    records: list[dict[str, Any]] = []
    for group, genes in names.items():
        for gene, pval, lfc in zip(genes, pvals.get(group, []), lfcs.get(group, []), strict=False):
            records.append(
                {
                    "cluster_id": group,
                    "gene": str(gene),
                    "p_value_adjusted": float(pval),
                    "log_fold_change": float(lfc),
                }
            )
    return pd.DataFrame.from_records(records, columns=MARKER_COLUMNS)


def annotate_anndata(
    adata: AnnData,
    cluster_key: str,
    *,
    background: str | None = None,
    result_prefix: str = "smartanno",
    compute_rankings: bool = True,
    **kwargs: Any,
) -> tuple[AnnData, pd.DataFrame]:
    """Annotate clusters of ``adata`` and write labels into ``adata.obs``.

    Extra keyword arguments are passed to :func:`smartanno.annotate.anno`.
    """

    if cluster_key not in adata.obs:
        raise KeyError(f"Cluster key '{cluster_key}' not found in adata.obs.")

    if compute_rankings:
        _ensure_rankings(adata, cluster_key)

    table = anno(markers_from_anndata(adata), background=background, **kwargs)

    clusters = adata.obs[cluster_key].astype(str)
    indexed = table.set_index("cluster_id")
    for column in ("cell_type", "subtype", "confidence"):
        adata.obs[f"{result_prefix}_{column}"] = (
            clusters.map(indexed[column]).fillna("").astype("object")
        )
    return adata, table


__all__ = ["annotate_anndata", "markers_from_anndata"]
