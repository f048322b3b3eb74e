"""Parse ``>CellType (subtype)<`` labels and assemble the per-cluster output table."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import pandas as pd

from backend.llm.annotator import STATUS_ERROR, STATUS_SUCCESS, AnnotationAttemptResult

CONFIDENCE_HIGH = "high"
CONFIDENCE_UNKNOWN = "unknown"
CONFIDENCE_FAILED = "failed"

OUTPUT_COLUMNS = [
    "cluster_id",
    "cell_type",
    "subtype",
    "confidence",
    "top_genes",
    "status",
    "message",
    "attempts",
    "tokens",
    "timestamp",
    "raw_content",
    "think_content",
]
MULTI_MODEL_COLUMNS = ["model", *OUTPUT_COLUMNS]

_TRAILING_PUNCTUATION = re.compile(r"[:;,.]+$")
_SUBTYPE = re.compile(r"^(.*?)\s*\((.*?)\)")


class LabelPolicy(str, Enum):
    """How strictly a label token must be delimited.

    ``STRICT`` requires both brackets (``>T cell<``); ``OPEN`` accepts a
    token running from ``>`` to the closing bracket or the end of the line.
    """

    STRICT = "strict"
    OPEN = "open"


_TOKEN_PATTERNS = {
    LabelPolicy.STRICT: re.compile(r">[ \t]*(.*?)\s*<"),
    LabelPolicy.OPEN: re.compile(r">[ \t]*(.*?)[ \t]*(?:<|$)", re.MULTILINE),
}


@dataclass(frozen=True)
class ParsedLabel:
    cell_type: str
    subtype: str
    confidence: str


def _squish(text: str) -> str:
    return " ".join(text.split())


def find_label_token(raw_content: str | None, policy: LabelPolicy = LabelPolicy.STRICT) -> str | None:
    """Return the first non-empty cleaned label token in ``raw_content``, if any."""

    if not raw_content:
        return None
    for match in _TOKEN_PATTERNS[LabelPolicy(policy)].finditer(raw_content):
        token = _TRAILING_PUNCTUATION.sub("", _squish(match.group(1))).strip()
        if token:
            return token
    return None


def split_label(celltype: str) -> tuple[str, str]:
    """Split ``"Type (subtype)"`` into its two parts."""

    if celltype in (CONFIDENCE_FAILED, CONFIDENCE_UNKNOWN):
        return celltype, celltype
    match = _SUBTYPE.match(celltype)
    if match and match.group(1).strip():
        return match.group(1).strip(), match.group(2).strip() or CONFIDENCE_UNKNOWN
    return celltype, CONFIDENCE_UNKNOWN


def extract_label(
    raw_content: str | None,
    status: str,
    policy: LabelPolicy = LabelPolicy.STRICT,
) -> ParsedLabel:
    """Derive cell type, subtype and confidence from one attempt result.

    Failed requests give ``failed`` throughout. A successful reply without a
    label token has ``unknown`` confidence; under ``STRICT`` its cell type is
    ``unknown`` as well, under ``OPEN`` it is the whitespace-squished reply.
    """

    if status != STATUS_SUCCESS:
        return ParsedLabel(CONFIDENCE_FAILED, CONFIDENCE_FAILED, CONFIDENCE_FAILED)

    token = find_label_token(raw_content, policy)
    if token is None:
        if LabelPolicy(policy) is LabelPolicy.OPEN and raw_content and raw_content.strip():
            cell_type, subtype = split_label(_squish(raw_content))
        else:
            cell_type, subtype = CONFIDENCE_UNKNOWN, CONFIDENCE_UNKNOWN
        return ParsedLabel(cell_type, subtype, CONFIDENCE_UNKNOWN)

    cell_type, subtype = split_label(token)
    return ParsedLabel(cell_type, subtype, CONFIDENCE_HIGH)


def _preview(raw_content: str | None, limit: int) -> str:
    if not raw_content:
        return ""
    if limit > 0 and len(raw_content) > limit:
        return f"{raw_content[:limit]}..."
    return raw_content


def build_annotation_table(
    results: Mapping[str, AnnotationAttemptResult],
    gene_lists: Mapping[str, Sequence[str]],
    *,
    policy: LabelPolicy = LabelPolicy.STRICT,
    model_name: str | None = None,
    preview_chars: int = 1000,
) -> pd.DataFrame:
    """Join attempt results with gene lists into one row per cluster.

    Rows follow the order of ``gene_lists``. A cluster without a result is
    reported as a failed row rather than dropped.
    """

    records: list[dict[str, object]] = []
    for cluster_id, genes in gene_lists.items():
        cluster_id = str(cluster_id)
        result = results.get(cluster_id) or AnnotationAttemptResult(
            cluster_id=cluster_id, status=STATUS_ERROR, message="No result returned"
        )
        label = extract_label(result.raw_content, result.status, policy)
        record: dict[str, object] = {
            "cluster_id": cluster_id,
            "cell_type": label.cell_type,
            "subtype": label.subtype,
            "confidence": label.confidence,
            "top_genes": ", ".join(genes),
            "status": result.status,
            "message": result.message,
            "attempts": result.attempts_used,
            "tokens": result.tokens,
            "timestamp": result.timestamp,
            "raw_content": _preview(result.raw_content, preview_chars),
            "think_content": _preview(result.think_content, preview_chars),
        }
        if model_name is not None:
            record["model"] = model_name
        records.append(record)

    columns = MULTI_MODEL_COLUMNS if model_name is not None else OUTPUT_COLUMNS
    return pd.DataFrame.from_records(records, columns=columns)


def export_table(table: pd.DataFrame, path: str | Path) -> Path:
    """Write ``table`` as CSV with the documented column order."""

    columns = MULTI_MODEL_COLUMNS if "model" in table.columns else OUTPUT_COLUMNS
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.reindex(columns=columns).to_csv(path, index=False)
    return path


__all__ = [
    "CONFIDENCE_FAILED",
    "CONFIDENCE_HIGH",
    "CONFIDENCE_UNKNOWN",
    "LabelPolicy",
    "MULTI_MODEL_COLUMNS",
    "OUTPUT_COLUMNS",
    "ParsedLabel",
    "build_annotation_table",
    "export_table",
    "extract_label",
    "find_label_token",
    "split_label",
]
