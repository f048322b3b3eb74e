from __future__ import annotations

import pandas as pd
import pytest

from backend.data_ingest.marker_loader import MARKER_COLUMNS, load_markers, prepare_gene_lists
from backend.llm.errors import ConfigurationError


def test_load_markers_from_seurat_columns(markers: pd.DataFrame) -> None:
    loaded = load_markers(markers)

    assert list(loaded.columns) == MARKER_COLUMNS
    assert loaded["cluster_id"].tolist()[:2] == ["0", "0"]
    assert loaded.loc[0, "log_fold_change"] == pytest.approx(3.1)


def test_load_markers_from_scanpy_columns(tmp_path) -> None:
    frame = pd.DataFrame(
        {
            "group": [0, 1],
            "names": ["CD3E", "MS4A1"],
            "pvals_adj": [0.001, 0.002],
            "logfoldchanges": [2.0, 3.0],
            "scores": [10.0, 11.0],
        }
    )
    path = tmp_path / "markers.csv"
    frame.to_csv(path, index=False)

    loaded = load_markers(path)

    assert loaded["cluster_id"].tolist() == ["0", "1"]
    assert loaded["gene"].tolist() == ["CD3E", "MS4A1"]


def test_load_markers_reports_missing_columns() -> None:
    with pytest.raises(ConfigurationError, match="log_fold_change"):
        load_markers(pd.DataFrame({"cluster": ["0"], "gene": ["CD3E"], "p_val_adj": [0.01]}))


def test_prepare_gene_lists_filters_and_ranks(markers: pd.DataFrame) -> None:
    gene_lists = prepare_gene_lists(markers, gene_number=2)

    # ACTB has the largest fold change but is not significant.
    assert gene_lists == {
        "0": ["CD3E", "CD2"],
        "1": ["MS4A1", "CD79A"],
        "2": ["LYZ", "S100A8"],
    }


def test_prepare_gene_lists_keeps_ties() -> None:
    frame = pd.DataFrame(
        {
            "cluster": ["0", "0", "0"],
            "gene": ["A", "B", "C"],
            "p_val_adj": [0.01, 0.01, 0.01],
            "avg_log2FC": [2.0, 1.0, 1.0],
        }
    )
    gene_lists = prepare_gene_lists(frame, gene_number=2)
    assert gene_lists["0"][0] == "A"
    assert sorted(gene_lists["0"]) == ["A", "B", "C"]


def test_prepare_gene_lists_appends_significant_extra_genes(markers: pd.DataFrame) -> None:
    gene_lists = prepare_gene_lists(markers, gene_number=1, extra_genes=["IL7R", "ACTB", "CD3E", "MS4A1"])

    assert gene_lists["0"] == ["CD3E", "IL7R"]
    assert gene_lists["1"] == ["MS4A1"]
    assert gene_lists["2"] == ["LYZ"]


def test_prepare_gene_lists_rejects_bad_gene_number(markers: pd.DataFrame) -> None:
    with pytest.raises(ConfigurationError, match="gene_number"):
        prepare_gene_lists(markers, gene_number=0)


def test_prepare_gene_lists_without_significant_markers(markers: pd.DataFrame) -> None:
    with pytest.raises(ConfigurationError, match="cutoff"):
        prepare_gene_lists(markers, p_value_cutoff=1e-50)
