"""Cooperative cancellation for acquisition runs.

A run carries an asyncio.Event. Each stage checks it before starting a
network call; an in-flight call is never interrupted.
"""

import asyncio


class AcquisitionCancelled(Exception):
    """Raised when a stage starts after cancellation was requested."""

    pass


def raise_if_cancelled(cancel_event: asyncio.Event | None, stage: str = "") -> None:
    """Raise AcquisitionCancelled if the event is set.

    Args:
        cancel_event: The run's cancellation event (None never cancels).
        stage: Name of the stage about to start, for the error message.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise AcquisitionCancelled(f"cancelled before {stage}" if stage else "cancelled")
