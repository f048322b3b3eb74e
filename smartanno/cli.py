"""Command-line interface: ``smartanno annotate`` and ``smartanno compare``."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from backend.llm.errors import AnnotationError, ConfigurationError
from backend.util.logging_config import configure_logging
from config.settings import get_settings
from smartanno.annotate import anno, multi_model_annotate

logger = logging.getLogger("smartanno.cli")

EXIT_CONFIGURATION_ERROR = 2
EXIT_ANNOTATION_ERROR = 1


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("markers", type=Path, help="Marker table CSV (Seurat or scanpy export).")
    parser.add_argument("--background", help="Free-text tissue/sample context for the prompt.")
    parser.add_argument("--api-key", help="API key. Defaults to the API_KEY environment variable.")
    parser.add_argument("--api-url", help="Base URL of the provider or gateway.")
    parser.add_argument(
        "--api-format",
        choices=["openai", "claude", "gemini", "responses"],
        help="Force a wire format instead of inferring it from the model name.",
    )
    parser.add_argument("--gene-number", type=int, help="Top markers per cluster to send.")
    parser.add_argument(
        "--p-value-cutoff",
        type=float,
        help="Keep markers whose adjusted p-value is below this cutoff.",
    )
    parser.add_argument("--workers", type=int, help="Clusters annotated concurrently.")
    parser.add_argument("--max-retries", type=int, help="Attempts per cluster.")
    parser.add_argument("--retry-delay", type=float, help="Seconds to wait between attempts.")
    parser.add_argument("--timeout", dest="time_out", type=float, help="Request timeout in seconds.")
    parser.add_argument("--temperature", type=float)
    parser.add_argument("--max-tokens", type=int)
    parser.add_argument(
        "--reasoning-effort",
        choices=["minimal", "low", "medium", "high"],
        help="Reasoning effort for responses-format models.",
    )
    parser.add_argument(
        "--verbosity",
        choices=["low", "medium", "high"],
        help="Answer verbosity for responses-format models.",
    )
    parser.add_argument(
        "--clusters",
        nargs="+",
        help="Only annotate these cluster IDs.",
    )
    parser.add_argument(
        "--extra-genes",
        nargs="+",
        help="Genes appended to a cluster's list when they are significant there.",
    )
    parser.add_argument("--log-file", type=Path, help="Append a request/response transcript here.")
    parser.add_argument(
        "--output",
        type=Path,
        help="Destination CSV. Defaults to writing the table to stdout.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smartanno",
        description="Annotate single-cell clusters from marker genes with LLMs.",
    )
    parser.add_argument("--log-level", help="Logging level (defaults to LOG_LEVEL or INFO).")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    annotate_parser = subparsers.add_parser(
        "annotate",
        help="Annotate every cluster with a single model.",
    )
    _add_common_arguments(annotate_parser)
    annotate_parser.add_argument("--model", help="Model name (defaults to MODEL or deepseek-r1-250120).")

    compare_parser = subparsers.add_parser(
        "compare",
        help="Annotate the same clusters with several models.",
    )
    _add_common_arguments(compare_parser)
    compare_parser.add_argument("--models", nargs="+", required=True, help="Model names to compare.")

    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "api_key": args.api_key,
        "api_url": args.api_url,
        "api_format": args.api_format,
        "gene_number": args.gene_number,
        "p_value_cutoff": args.p_value_cutoff,
        "workers": args.workers,
        "max_retries": args.max_retries,
        "retry_delay": args.retry_delay,
        "time_out": args.time_out,
        "temperature": args.temperature,
        "max_tokens": args.max_tokens,
        "reasoning_effort": args.reasoning_effort,
        "verbosity": args.verbosity,
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level or get_settings().log_level, json_output=args.json_logs)

    common = {
        "background": args.background,
        "selected_clusters": args.clusters,
        "extra_genes": args.extra_genes,
        "log_file": args.log_file,
        "output_csv": args.output,
        **_overrides(args),
    }
    try:
        if args.command == "annotate":
            table = anno(args.markers, model=args.model, **common)
        else:
            table = multi_model_annotate(args.markers, args.models, **common)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIGURATION_ERROR
    except AnnotationError as exc:
        logger.error("Annotation failed: %s", exc)
        return EXIT_ANNOTATION_ERROR

    if args.output is None:
        table.to_csv(sys.stdout, index=False)
    else:
        logger.info("Wrote %d rows to %s", len(table), args.output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
