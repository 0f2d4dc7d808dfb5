"""Periodic acquisition runs using APScheduler.

This module triggers the batch orchestrator on a fixed interval using
APScheduler's AsyncIOScheduler. Manual runs go through the same
orchestrator, so they share its per-item guard with the scheduled ones.

Usage:
    from src.monitoring import AcquisitionScheduler

    scheduler = AcquisitionScheduler(orchestrator, interval_minutes=60)
    scheduler.start()

    # On shutdown:
    scheduler.stop()
"""

import asyncio

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.monitoring.orchestrator import BatchOrchestrator, RunReport

logger = structlog.get_logger(__name__)

# Default interval between scheduled runs
DEFAULT_INTERVAL_MINUTES = 60

JOB_ID = "acquisition_run"


class AcquisitionScheduler:
    """Manages periodic acquisition runs.

    This class:
    - Runs the orchestrator over the backlog on a fixed interval
    - Never overlaps two scheduled runs
    - Signals cancellation to running batches on shutdown
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
    ):
        """Initialize the scheduler.

        Args:
            orchestrator: Orchestrator to run
            interval_minutes: Minutes between scheduled runs
        """
        self._orchestrator = orchestrator
        self._interval_minutes = interval_minutes
        self._scheduler: AsyncIOScheduler | None = None
        self._cancel_event = asyncio.Event()
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def cancel_event(self) -> asyncio.Event:
        """Event set when the scheduler is stopping."""
        return self._cancel_event

    def start(self) -> None:
        """Start the periodic runs. Must be called from a running event loop."""
        if self._is_running:
            logger.warning("scheduler_already_running")
            return

        self._cancel_event.clear()
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=JOB_ID,
            name="Backlog acquisition run",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
        )

        self._scheduler.start()
        self._is_running = True

        logger.info("acquisition_scheduler_started", interval_minutes=self._interval_minutes)

    def stop(self) -> None:
        """Stop the scheduler and ask running batches to wind down."""
        self._cancel_event.set()
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("acquisition_scheduler_stopped")

    async def run_now(self) -> RunReport:
        """Run a batch immediately (manual trigger).

        Returns:
            Report of the run
        """
        logger.info("manual_run_requested")
        return await self._orchestrator.run(self._cancel_event)

    async def _run_job(self) -> RunReport:
        report = await self._orchestrator.run(self._cancel_event)
        if report.error:
            logger.error("scheduled_run_failed", error=report.error)
        return report
