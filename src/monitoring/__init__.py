"""Acquisition monitoring module.

This module provides:
- Batch orchestration of the backlog with bounded concurrency
- APScheduler integration for periodic runs
- Season pack consumption tracking and release
- Cleanup of consumed items

Usage:
    from src.monitoring import AcquisitionScheduler, BatchOrchestrator

    orchestrator = BatchOrchestrator(repository, search, verifier, tracker)
    scheduler = AcquisitionScheduler(orchestrator)
    scheduler.start()
"""

from src.monitoring.cleanup import CleanupService
from src.monitoring.orchestrator import BatchOrchestrator, ItemOutcome, RunReport
from src.monitoring.scheduler import AcquisitionScheduler
from src.monitoring.season_packs import SeasonPackNotFoundError, SeasonPackTracker

__all__ = [
    "AcquisitionScheduler",
    "BatchOrchestrator",
    "CleanupService",
    "ItemOutcome",
    "RunReport",
    "SeasonPackNotFoundError",
    "SeasonPackTracker",
]
