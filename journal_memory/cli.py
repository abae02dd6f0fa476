"""Command line interface for the journal memory index"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv

from journal_memory.config import AppConfig
from journal_memory.errors import MemoryEngineError
from journal_memory.models.search_result import DateRange, MemorySearchQuery
from journal_memory.models.themes import ThemeAnalysisOptions
from journal_memory.services.embedder import FastEmbedGenerator
from journal_memory.services.maintenance import MaintenanceScheduler
from journal_memory.services.memory_service import MemoryService

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI (stdout)"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="journal-memory",
        description="Index journal messages and notes for semantic search.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show index coverage and queue state.")
    subparsers.add_parser("drain", help="Embed every queued entity now.")
    subparsers.add_parser("rebuild", help="Clear and regenerate all embeddings.")

    cleanup = subparsers.add_parser("cleanup", help="Remove orphaned embeddings.")
    cleanup.add_argument(
        "--requeue-stale",
        action="store_true",
        default=False,
        help="Also queue regeneration of embeddings from other model versions.",
    )

    search = subparsers.add_parser("search", help="Semantic search over the journal.")
    search.add_argument("query", help="Text to search for.")
    search.add_argument("--limit", type=int, default=None, help="Maximum results (1-100).")
    search.add_argument("--min-score", type=float, default=None, help="Minimum similarity.")
    search.add_argument("--day", default=None, metavar="YYYY-MM-DD", help="Only this day.")
    search.add_argument("--from", dest="start_date", default=None, metavar="YYYY-MM-DD")
    search.add_argument("--to", dest="end_date", default=None, metavar="YYYY-MM-DD")

    themes = subparsers.add_parser("themes", help="Find recurring themes.")
    themes.add_argument("--min-frequency", type=int, default=None)
    themes.add_argument("--max-themes", type=int, default=None)

    subparsers.add_parser(
        "maintain", help="Run scheduled queue drains and orphan sweeps until interrupted."
    )
    subparsers.add_parser(
        "download-model", help="Fetch the embedding model into the cache directory."
    )
    return parser


async def _maintain(service: MemoryService, settings: AppConfig) -> None:
    scheduler = AsyncIOScheduler()
    maintenance = MaintenanceScheduler(service, settings)
    maintenance.configure_scheduler(scheduler)
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        maintenance.stop_scheduler()
        scheduler.shutdown(wait=False)


async def run(args: argparse.Namespace, settings: AppConfig) -> int:  # noqa: C901
    if args.command == "download-model":
        await asyncio.to_thread(FastEmbedGenerator(settings).download_model)
        print(f"✓ Model cached in {settings.fastembed_cache_dir}")
        return 0

    if args.command == "maintain" and not settings.maintenance_enabled:
        logger.warning("Background maintenance is disabled (set MAINTENANCE_ENABLED=true)")
        return 1

    service = await MemoryService.create(settings)

    try:
        if args.command == "stats":
            stats = await service.get_index_stats()
            print(stats.model_dump_json(indent=2))

        elif args.command == "drain":
            result = await service.drain()
            print(result.model_dump_json(indent=2))
            return 1 if result.failed else 0

        elif args.command == "rebuild":

            def progress(current: int, total: int) -> None:
                print(f"  {current}/{total}")

            generated = await service.rebuild_index(on_progress=progress)
            print(f"✓ Generated {generated} embeddings")

        elif args.command == "cleanup":
            removed = await service.cleanup_orphans()
            print(f"✓ Removed {removed} orphaned embeddings")
            if args.requeue_stale:
                queued = await service.requeue_stale()
                print(f"✓ Queued {queued} stale embeddings for regeneration")

        elif args.command == "search":
            date_range = None
            if args.start_date or args.end_date:
                date_range = DateRange(start_date=args.start_date, end_date=args.end_date)

            output = await service.search(
                MemorySearchQuery(
                    query=args.query,
                    limit=args.limit or settings.search_default_limit,
                    min_score=(
                        args.min_score if args.min_score is not None else settings.search_min_score
                    ),
                    day_id=args.day,
                    date_range=date_range,
                )
            )
            for result in output.results:
                print(
                    f"{result.rank:>3}. [{result.score:.3f}] {result.day_id} "
                    f"{result.entity_type.value}: {result.excerpt}"
                )
            print(
                f"\n{output.search_info.total_results} results "
                f"({output.search_info.query_time_ms:.1f}ms)"
            )

        elif args.command == "themes":
            analysis = await service.analyze_recurring_themes(
                ThemeAnalysisOptions(
                    min_frequency=args.min_frequency or settings.theme_min_frequency,
                    max_themes=args.max_themes or settings.theme_max_themes,
                )
            )
            if not analysis.themes:
                print("No recurring themes found")
            for insight in analysis.insights:
                print(f"- {insight.description}")

        elif args.command == "maintain":
            await _maintain(service, settings)

        return 0
    finally:
        await service.close()


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the journal-memory command

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    # Load .env file first (won't override existing env vars)
    if Path(".env").exists():
        load_dotenv()

    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        return asyncio.run(run(args, AppConfig()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except MemoryEngineError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
