# src/main.py — v3
"""CLI entry point — ask, fingerprint commands.

Usage:
    evidencerank ask "<question>" [options]
    evidencerank fingerprint "<question>" [--top-k N] [--min-similarity F]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from evidencerank.version import __version__

if TYPE_CHECKING:
    from evidencerank.api.models import QueryResponse
    from evidencerank.config.settings import Settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="evidencerank",
        description=f"evidencerank v{__version__}: hybrid retrieval and ranking for grounded answers",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- ask ---
    p_ask = subparsers.add_parser("ask", help="Answer a question from the knowledge base")
    p_ask.add_argument("question", help="Question text")
    _add_query_options(p_ask)
    p_ask.add_argument(
        "--corpus", type=Path, default=None,
        help="JSONL corpus for the in-memory search backend",
    )
    p_ask.add_argument(
        "--json", dest="as_json", action="store_true",
        help="Print the full response as JSON",
    )
    p_ask.set_defaults(func=_cmd_ask)

    # --- fingerprint ---
    p_fp = subparsers.add_parser(
        "fingerprint", help="Print the cache fingerprint of a question",
    )
    p_fp.add_argument("question", help="Question text")
    _add_query_options(p_fp)
    p_fp.set_defaults(func=_cmd_fingerprint)

    return parser


def _add_query_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-k", "--top-k", type=int, default=None,
        help="Number of sources to return (default: RETRIEVAL_TOP_K)",
    )
    parser.add_argument(
        "--min-similarity", type=float, default=None,
        help="Cosine similarity threshold (default: RETRIEVAL_MIN_SIMILARITY)",
    )


async def _cmd_ask(args: argparse.Namespace) -> int:
    """Run one question through the full pipeline."""
    from evidencerank.api.facade import answer_question, build_orchestrator
    from evidencerank.api.models import QueryOptions, QueryRequest
    from evidencerank.config.settings import load_settings

    overrides: dict[str, object] = {}
    if args.corpus is not None:
        if not args.corpus.exists():
            print(f"Corpus not found: {args.corpus}", file=sys.stderr)
            return 1
        overrides["search_backend"] = "memory"
        overrides["search_corpus_path"] = args.corpus
    if args.verbose:
        overrides["log_level"] = "DEBUG"

    settings = load_settings(**overrides)
    _setup_logging(settings)

    request = QueryRequest(
        question=args.question,
        options=QueryOptions(top_k=args.top_k, min_similarity=args.min_similarity),
    )
    response = await answer_question(request, build_orchestrator(settings), settings)

    if args.as_json:
        print(json.dumps(response.to_wire(), ensure_ascii=False, indent=2))
    else:
        _print_response(response)
    return 1 if response.error else 0


async def _cmd_fingerprint(args: argparse.Namespace) -> int:
    """Print the cache key for a question without running the pipeline."""
    from evidencerank.cache.fingerprint import compute_fingerprint
    from evidencerank.config.settings import load_settings
    from evidencerank.core.models import Query

    settings = load_settings()
    query = Query(
        question=args.question,
        k=args.top_k if args.top_k is not None else settings.retrieval_top_k,
        min_similarity=(
            args.min_similarity
            if args.min_similarity is not None
            else settings.retrieval_min_similarity
        ),
    )
    print(compute_fingerprint(query))
    return 0


def _print_response(response: QueryResponse) -> None:
    """Print a human-readable summary of a QueryResponse."""
    meta = response.metadata
    print(f"\n{response.answer}\n")
    print(f"  Confidence:   {response.confidence:.3f}")
    print(f"  Strategy:     {meta.search_strategy}{' (fallback)' if meta.fallback_used else ''}")
    print(f"  Model:        {meta.model_used or '-'}")
    print(f"  Search:       {response.search_time_ms:.1f} ms")
    print(f"  Total:        {response.processing_time_ms:.1f} ms")
    if response.sources:
        print("  Sources:")
        for i, src in enumerate(response.sources, 1):
            preview = src.content[:80].replace("\n", " ")
            if len(src.content) > 80:
                preview += "..."
            print(f"    [{i}] {src.id}  hybrid={src.hybrid_score:.3f}  {preview}")


def _setup_logging(settings: Settings) -> None:
    """Configure logging for CLI usage."""
    from evidencerank.logging.logger import setup_logging

    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
