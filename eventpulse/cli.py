"""Command-line entrypoint for the event worker.

Usage:
    python -m eventpulse                 # run until SIGINT/SIGTERM
    python -m eventpulse --once          # process a single batch and exit

Exit status is 0 on clean shutdown and 1 when the worker fails to start.
"""

import argparse
import asyncio
import logging

from pydantic import ValidationError

from eventpulse.backends.redis import RedisLockStore
from eventpulse.backends.sqlite import SqliteEventStore
from eventpulse.core.logging import configure_logging
from eventpulse.core.service import EventService
from eventpulse.core.settings import WorkerSettings
from eventpulse.core.worker import EventWorker
from eventpulse.handlers import RedisUserCache, create_registry

logger = logging.getLogger("eventpulse.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eventpulse", description="Process queued events in the background."
    )
    parser.add_argument("--database", dest="database_path", help="SQLite event log path")
    parser.add_argument("--redis-url", dest="redis_url", help="Redis URL for event locks")
    parser.add_argument("--batch-size", dest="batch_size", type=int, help="Events per batch")
    parser.add_argument("--log-level", dest="log_level", help="Logging level")
    parser.add_argument(
        "--once", action="store_true", help="Process one batch, run one cleanup and exit"
    )
    return parser


async def build_service(settings: WorkerSettings) -> EventService:
    """Wire the SQLite queue, Redis locks and built-in handlers together.

    The user cache shares the lock store's Redis connection pool.
    """
    store = SqliteEventStore(settings.database_path)
    locks = RedisLockStore(settings.redis_url)
    cache = RedisUserCache(await locks.client())
    return EventService.from_settings(settings, store, locks, create_registry(cache))


async def _run(settings: WorkerSettings, once: bool) -> None:
    service = await build_service(settings)
    try:
        if once:
            service.registry.initialize()
            result = await service.process_pending_events()
            cleanup = await service.cleanup_processed_events()
            logger.info(
                "Single run completed",
                extra={**result.as_dict(), "deleted": cleanup.deleted},
            )
        else:
            await EventWorker.from_settings(settings, service).run()
    finally:
        await service.store.close()
        await service.locks.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {
        key: value
        for key, value in vars(args).items()
        if key != "once" and value is not None
    }

    try:
        settings = WorkerSettings(**overrides)
    except ValidationError as e:
        configure_logging()
        logger.error("Invalid configuration", extra={"error": str(e)})
        return 1

    configure_logging(settings.log_level)
    try:
        asyncio.run(_run(settings, args.once))
    except Exception as e:
        logger.error(f"Failed to start event worker: {e}", extra={"error": str(e)}, exc_info=True)
        return 1
    return 0
