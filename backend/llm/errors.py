"""Exception types shared by the annotation pipeline."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a run is misconfigured; always raised before any request is sent."""


class AnnotationError(RuntimeError):
    """Raised when an annotation run produced no usable result at all."""


__all__ = ["AnnotationError", "ConfigurationError"]
