"""Public helpers for annotating single-cell clusters with LLMs.

Importing the AnnData integration is deferred via lazy attribute access so the
core entry points work without anndata installed.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "anno": "smartanno.annotate",
    "multi_model_annotate": "smartanno.annotate",
    "annotate_anndata": "smartanno.scanpy",
    "markers_from_anndata": "smartanno.scanpy",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
