"""
Process queued jobs once and exit - for cron or manual runs.

Usage:
    python scripts/process_jobs.py
    python scripts/process_jobs.py --limit 50
    python scripts/process_jobs.py --cleanup --retention-days 14
    python scripts/process_jobs.py --stats
"""
import argparse
import asyncio
import logging

from src.config import get_settings
from src.database import async_session_factory
from src.services.job_queue import JobQueue
from src.utils.logging import configure_structured_logging, generate_correlation_id, set_correlation_id
from src.workers.job_processor import process_pending_jobs

logger = logging.getLogger("trailtune.scripts.process_jobs")


async def main(args: argparse.Namespace) -> None:
    set_correlation_id(generate_correlation_id())

    if args.stats:
        async with async_session_factory() as db:
            stats = await JobQueue(db).stats()
        logger.info("Queue: total=%d", stats["total"])
        for row in stats["by_status"]:
            logger.info("  %-10s %d", row["status"], row["count"])
        return

    processed = await process_pending_jobs(args.limit)
    logger.info("Processed %d jobs", processed)

    if args.cleanup:
        async with async_session_factory() as db:
            removed = await JobQueue(db).cleanup(args.retention_days)
        logger.info("Cleaned up %d old jobs", removed)


if __name__ == "__main__":
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Process queued activity mapping jobs")
    parser.add_argument("--limit", type=int, default=settings.cron_batch_size)
    parser.add_argument("--cleanup", action="store_true", help="Delete old finished jobs")
    parser.add_argument("--retention-days", type=int, default=settings.job_retention_days)
    parser.add_argument("--stats", action="store_true", help="Print queue statistics and exit")

    configure_structured_logging(settings.log_level)
    asyncio.run(main(parser.parse_args()))
