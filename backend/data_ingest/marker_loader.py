"""Utilities for turning differential-expression results into per-cluster gene lists.

Marker tables from upstream tools are normalized into a unified schema with the
following columns:

- cluster_id: cluster identifier, always a string.
- gene: gene symbol.
- p_value_adjusted: adjusted p-value of the marker test.
- log_fold_change: (log2) fold change of the cluster against all others.

Both Seurat ``FindAllMarkers`` exports and scanpy ``rank_genes_groups_df``
frames are recognised; column names are matched case-insensitively.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import pandas as pd

from backend.llm.errors import ConfigurationError

MARKER_COLUMNS = [
    "cluster_id",
    "gene",
    "p_value_adjusted",
    "log_fold_change",
]

# Aliases in priority order, lower-case.
COLUMN_ALIASES: dict[str, list[str]] = {
    "cluster_id": ["cluster_id", "cluster", "group", "clusters"],
    "gene": ["gene", "names", "gene_symbol", "symbol", "gene_name"],
    "p_value_adjusted": [
        "p_value_adjusted",
        "p_val_adj",
        "pvals_adj",
        "padj",
        "fdr",
        "p_val",
        "pvals",
        "p_value",
    ],
    "log_fold_change": [
        "log_fold_change",
        "avg_log2fc",
        "avg_logfc",
        "logfoldchanges",
        "log2fc",
        "logfc",
    ],
}


def _resolve_columns(df: pd.DataFrame) -> dict[str, str]:
    lower = {str(col).lower(): col for col in df.columns}
    resolved: dict[str, str] = {}
    missing: list[str] = []
    for standard, aliases in COLUMN_ALIASES.items():
        match = next((lower[alias] for alias in aliases if alias in lower), None)
        if match is None:
            missing.append(standard)
        else:
            resolved[standard] = match
    if missing:
        raise ConfigurationError(
            f"Marker table is missing columns: {', '.join(missing)}. "
            f"Found columns: {', '.join(map(str, df.columns))}"
        )
    return resolved


def load_markers(source: pd.DataFrame | str | Path) -> pd.DataFrame:
    """Load a marker table from a DataFrame or CSV path into the normalized schema."""

    df = source if isinstance(source, pd.DataFrame) else pd.read_csv(Path(source))
    columns = _resolve_columns(df)

    normalized = pd.DataFrame(
        {
            "cluster_id": df[columns["cluster_id"]].astype(str),
            "gene": df[columns["gene"]],
            "p_value_adjusted": pd.to_numeric(df[columns["p_value_adjusted"]], errors="coerce"),
            "log_fold_change": pd.to_numeric(df[columns["log_fold_change"]], errors="coerce"),
        }
    )
    normalized = normalized.dropna(subset=["gene"])
    normalized["gene"] = normalized["gene"].astype(str)
    return normalized[MARKER_COLUMNS].reset_index(drop=True)


def _unique_ordered(genes: Iterable[object]) -> list[str]:
    """Return unique gene symbols while preserving their first-seen order."""

    seen: set[str] = set()
    ordered: list[str] = []
    for gene in genes:
        symbol = str(gene).strip()
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        ordered.append(symbol)
    return ordered


def prepare_gene_lists(
    markers: pd.DataFrame,
    *,
    gene_number: int = 100,
    p_value_cutoff: float = 0.05,
    extra_genes: Iterable[str] | None = None,
) -> dict[str, list[str]]:
    """Select the top ``gene_number`` significant markers of every cluster.

    Markers with an adjusted p-value below ``p_value_cutoff`` are ranked by
    fold change; genes tied at the cut-off are all kept. Genes from
    ``extra_genes`` that are significant markers of a cluster are appended to
    that cluster's list. Clusters keep their order of first appearance.
    """

    if gene_number < 1:
        raise ConfigurationError(f"gene_number must be at least 1, got {gene_number}")

    markers = load_markers(markers)
    significant = markers[markers["p_value_adjusted"] < p_value_cutoff]
    extra = _unique_ordered(extra_genes or [])

    gene_lists: dict[str, list[str]] = {}
    for cluster_id, group in significant.groupby("cluster_id", sort=False):
        top = group.nlargest(gene_number, "log_fold_change", keep="all")
        genes = _unique_ordered(top["gene"])
        if extra:
            present = set(group["gene"])
            genes.extend(gene for gene in extra if gene in present and gene not in genes)
        gene_lists[str(cluster_id)] = genes

    if not gene_lists:
        raise ConfigurationError(
            f"No marker genes pass the adjusted p-value cutoff of {p_value_cutoff}."
        )
    return gene_lists


__all__ = ["COLUMN_ALIASES", "MARKER_COLUMNS", "load_markers", "prepare_gene_lists"]
