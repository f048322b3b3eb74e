"""Prompt builders for smartanno's LLM interactions."""

from __future__ import annotations

from collections.abc import Sequence

ROLE_PREAMBLE = (
    "You are a senior biomedical professor specializing in single-cell data analysis. "
    "The user is conducting single-cell annotation analysis and provides the sample "
    "background and the top highly expressed marker genes of one cluster."
)

FORMAT_INSTRUCTIONS = (
    "Infer the cell type and subtype from the gene expression characteristics. "
    "Your reply MUST begin with the type and subtype in English in the format "
    ">CellType (subtype)< before any other text. Give exactly one type and one "
    "subtype; if the evidence is conflicting or indeterminate, begin with "
    ">Uncertain (unknown)< instead. Answer the rest in the same language as the "
    "sample background."
)


def _format_background(background: str | None) -> str:
    background = (background or "").strip()
    return f"Sample background: {background}" if background else "Sample background: not provided."


def build_annotation_prompt(
    cluster_id: str,
    genes: Sequence[str],
    background: str | None = None,
) -> str:
    """Construct the single-cluster annotation prompt."""

    gene_line = ", ".join(genes) if genes else "No marker genes supplied."
    return (
        f"{ROLE_PREAMBLE}\n"
        f"{_format_background(background)}\n"
        f"Cluster {cluster_id}: top {len(genes)} marker genes (descending fold change):\n"
        f"{gene_line}\n"
        f"{FORMAT_INSTRUCTIONS}"
    )


__all__ = ["FORMAT_INSTRUCTIONS", "ROLE_PREAMBLE", "build_annotation_prompt"]
