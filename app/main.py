"""
Process entry point.

    python -m app.main worker            run the worker pool until interrupted
    python -m app.main ingest [channel]  scrape channels once and enqueue new posts
    python -m app.main sweep             recover stale jobs, enqueue the backlog, purge caches, expire old listings
    python -m app.main stats             log queue statistics and this month's AI spend
"""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from app.core.config import settings
from app.db.init_db import init_database
from app.db.mongodb import mongodb
from app.services import Pipeline, create_pipeline

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Suppress DEBUG logs from external libraries
logging.getLogger("pymongo").setLevel(logging.WARNING)
logging.getLogger("motor").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("anthropic").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def run_worker(pipeline: Pipeline) -> None:
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    await pipeline.worker_pool.start()
    pool_finished = asyncio.create_task(pipeline.worker_pool.wait())
    stop_waiter = asyncio.create_task(stop_requested.wait())
    await asyncio.wait({pool_finished, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)

    stop_waiter.cancel()
    await pipeline.worker_pool.stop()
    logger.info("Metrics at shutdown: %s", pipeline.metrics.snapshot())


async def run_ingest(pipeline: Pipeline, channels: List[str], limit: int) -> None:
    results = await pipeline.ingestion_service.ingest_channels(channels, limit)
    for channel, stats in results.items():
        logger.info("%s: %s", channel, stats)


async def run_sweep(pipeline: Pipeline, limit: int) -> None:
    recovered = await pipeline.job_queue.recover_stale_jobs()
    enqueued = await pipeline.ingestion_service.enqueue_backlog(limit)
    purged = await pipeline.extraction_service.purge_expired_cache()
    purged += await pipeline.geocoding_service.purge_expired_cache()
    expired = await pipeline.normalizer.expire_stale_listings()
    logger.info(
        "Sweep finished: %s recovered, %d post(s) enqueued, %d cache entries purged, %d listing(s) expired",
        recovered,
        enqueued,
        purged,
        expired,
    )


async def run_stats(pipeline: Pipeline) -> None:
    logger.info("Queue stats: %s", await pipeline.job_queue.get_queue_stats())
    logger.info("AI spend this month: $%.4f", await pipeline.cost_service.get_monthly_cost())
    for row in await pipeline.cost_service.get_usage_summary():
        logger.info("AI usage: %s", row)


async def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="app.main", description=settings.PROJECT_NAME)
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("worker", help="Run the worker pool")
    ingest_parser = subparsers.add_parser("ingest", help="Scrape channels once")
    ingest_parser.add_argument("channels", nargs="*", help="Channel usernames (defaults to TELEGRAM_CHANNELS)")
    ingest_parser.add_argument("--limit", type=int, default=settings.PARSING_BATCH_SIZE)
    sweep_parser = subparsers.add_parser("sweep", help="Recover stale jobs, enqueue the backlog and expire old listings")
    sweep_parser.add_argument("--limit", type=int, default=settings.PARSING_BATCH_SIZE)
    subparsers.add_parser("stats", help="Log queue and AI usage statistics")
    args = parser.parse_args(argv)

    await mongodb.connect_to_mongo()
    try:
        db = mongodb.get_database()
        await init_database(db)
        pipeline = create_pipeline(db)

        if args.command == "worker":
            await run_worker(pipeline)
        elif args.command == "ingest":
            await run_ingest(pipeline, args.channels or settings.telegram_channels_list, args.limit)
        elif args.command == "sweep":
            await run_sweep(pipeline, args.limit)
        elif args.command == "stats":
            await run_stats(pipeline)
    finally:
        await mongodb.close_mongo_connection()


if __name__ == "__main__":
    asyncio.run(main())
