"""Process entry point.

Wires settings, persistence, search providers, the remote cache client and
the orchestrator together, then runs the backlog on a schedule until
SIGINT/SIGTERM.

Usage:
    mediafetch                 # run now, then every CHECK_INTERVAL_MINUTES
    mediafetch once            # single batch run, then exit
    mediafetch consume <id>    # clean up after an item was watched
"""

import asyncio
import signal
import sys
from contextlib import AsyncExitStack
from typing import NoReturn

from src.config import Settings, settings
from src.debrid.client import AllDebridClient
from src.debrid.verifier import CacheVerifier
from src.library.repository import BaseRepository, SQLiteRepository
from src.logger import get_logger
from src.monitoring.cleanup import CleanupService
from src.monitoring.orchestrator import BatchOrchestrator
from src.monitoring.scheduler import AcquisitionScheduler
from src.monitoring.season_packs import SeasonPackTracker
from src.search.aggregator import SearchAggregator
from src.search.cache import TTLCache
from src.search.filters import Blacklist
from src.search.newznab import NewznabProvider
from src.search.piratebay import APIBayProvider
from src.search.ygg import YggProvider
from src.usenet.fallback import UsenetFallback
from src.usenet.nzbget import NZBGetClient

logger = get_logger(__name__)

USAGE = "usage: mediafetch [once | consume <item_id>]"


async def build_usenet(
    stack: AsyncExitStack,
    config: Settings,
    repository: BaseRepository,
    blacklist: Blacklist,
) -> UsenetFallback | None:
    """Create the NZB fallback when both indexer and downloader are configured."""
    if not config.has_usenet:
        logger.info("usenet_disabled")
        return None

    indexer = NewznabProvider(
        host=config.newznab_host or "",
        api_key=config.newznab_api_key.get_secret_value() if config.newznab_api_key else "",
        timeout=config.request_timeout,
    )
    nzb_search = await stack.enter_async_context(SearchAggregator([indexer], blacklist))
    nzbget = await stack.enter_async_context(
        NZBGetClient(
            url=config.nzbget_url or "",
            username=config.nzbget_user,
            password=config.nzbget_password.get_secret_value() if config.nzbget_password else None,
            timeout=config.request_timeout,
        )
    )
    return UsenetFallback(nzb_search, nzbget, repository, category=config.nzbget_category)


async def build_orchestrator(
    stack: AsyncExitStack,
    config: Settings,
    repository: BaseRepository,
    client: AllDebridClient,
) -> BatchOrchestrator:
    """Create the orchestrator and the components it drives."""
    blacklist = Blacklist(
        config.blacklist_file,
        TTLCache(ttl=config.blacklist_ttl, name="blacklist"),
    )
    hash_cache: TTLCache[str, str] = TTLCache(ttl=config.hash_cache_ttl, name="ygg_hashes")

    torrent_search = await stack.enter_async_context(
        SearchAggregator(
            [
                APIBayProvider(timeout=config.request_timeout),
                YggProvider(timeout=config.request_timeout, hash_cache=hash_cache),
            ],
            blacklist,
        )
    )

    verifier = CacheVerifier(client, repository, settle_delay=config.cache_settle_delay)
    tracker = SeasonPackTracker(repository, client)
    usenet = await build_usenet(stack, config, repository, blacklist)

    return BatchOrchestrator(
        repository,
        torrent_search,
        verifier,
        tracker=tracker,
        usenet=usenet,
        max_workers=config.max_workers,
    )


async def serve(orchestrator: BatchOrchestrator, interval_minutes: int) -> None:
    """Run the backlog now and then on a schedule until a stop signal."""
    scheduler = AcquisitionScheduler(orchestrator, interval_minutes=interval_minutes)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Signal handlers are unavailable on some platforms
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug("signal_handler_unavailable", signal=sig.name)

    scheduler.start()
    try:
        first_run = asyncio.create_task(scheduler.run_now())
        await stop_event.wait()
        logger.info("shutdown_requested")
        # Running stages stop at their next cancellation check
        scheduler.stop()
        await first_run
    finally:
        scheduler.stop()


async def main_async(argv: list[str]) -> int:
    """Main async entry point.

    Returns:
        Process exit code
    """
    logger.info(
        "mediafetch_starting",
        environment=settings.environment,
        log_level=settings.log_level,
        settings=settings.get_safe_dict(),
    )

    if not settings.has_alldebrid:
        logger.error("alldebrid_not_configured")
        return 1

    command = argv[0] if argv else "serve"
    if command not in ("serve", "once", "consume") or (
        command == "consume" and (len(argv) != 2 or not argv[1].isdigit())
    ):
        print(USAGE, file=sys.stderr)
        return 2

    async with AsyncExitStack() as stack:
        repository = await stack.enter_async_context(SQLiteRepository(settings.database_path))
        client = await stack.enter_async_context(
            AllDebridClient(
                api_key=settings.alldebrid_api_key.get_secret_value(),
                agent=settings.alldebrid_agent,
                timeout=settings.request_timeout,
            )
        )

        if command == "consume":
            cleanup = CleanupService(repository, SeasonPackTracker(repository, client), client)
            return 0 if await cleanup.consume(int(argv[1])) else 1

        orchestrator = await build_orchestrator(stack, settings, repository, client)
        if command == "once":
            report = await orchestrator.run()
            return 1 if report.error else 0

        await serve(orchestrator, settings.check_interval_minutes)

    logger.info("mediafetch_stopped")
    return 0


def run() -> NoReturn:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main_async(sys.argv[1:])))
    except KeyboardInterrupt:
        logger.info("mediafetch_interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("mediafetch_crashed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()
