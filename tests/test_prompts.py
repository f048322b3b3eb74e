from __future__ import annotations

from backend.llm.prompts import FORMAT_INSTRUCTIONS, build_annotation_prompt


def test_prompt_lists_genes_in_order() -> None:
    prompt = build_annotation_prompt("7", ["CD3E", "CD8A", "GZMB"], "human tonsil")

    assert "Cluster 7: top 3 marker genes" in prompt
    assert "CD3E, CD8A, GZMB" in prompt
    assert "Sample background: human tonsil" in prompt
    assert prompt.endswith(FORMAT_INSTRUCTIONS)


def test_prompt_requires_bracketed_label() -> None:
    assert ">CellType (subtype)<" in FORMAT_INSTRUCTIONS
    assert ">Uncertain (unknown)<" in FORMAT_INSTRUCTIONS


def test_prompt_without_background_or_genes() -> None:
    prompt = build_annotation_prompt("0", [], None)

    assert "Sample background: not provided." in prompt
    assert "No marker genes supplied." in prompt
