"""Remote cache verification state machine.

A candidate moves UNSUBMITTED -> SUBMITTED -> CACHED | NOT_CACHED, and a
cached candidate moves on to LINKED once a playable file is unlocked.
Any failure after submission withdraws the magnet from the service so
abandoned uploads do not eat the account quota. NOT_CACHED, LINKED and
FAILED are terminal.

Usage:
    verifier = CacheVerifier(client, repository)
    result = await verifier.verify(candidate, item)
    if result.acquired:
        ...
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from src.cancellation import AcquisitionCancelled, raise_if_cancelled
from src.debrid.client import (
    AllDebridClient,
    DebridError,
    RemoteFile,
    UnlockedLink,
    pick_largest_video,
)
from src.library.models import AcquisitionKind, AcquisitionRecord, MediaItem
from src.library.repository import BaseRepository
from src.search.models import ReleaseCandidate

logger = structlog.get_logger(__name__)

DEFAULT_SETTLE_DELAY = 2.0

EPISODE_FILE_PATTERN = re.compile(r"s(\d{1,2})[ ._-]?e(\d{1,3})", re.IGNORECASE)


# ============================================================================
# State machine
# ============================================================================


class VerificationState(str, Enum):
    """States of one candidate's verification."""

    UNSUBMITTED = "unsubmitted"
    SUBMITTED = "submitted"
    CACHED = "cached"
    NOT_CACHED = "not_cached"
    LINKED = "linked"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[VerificationState, set[VerificationState]] = {
    VerificationState.UNSUBMITTED: {VerificationState.SUBMITTED, VerificationState.FAILED},
    VerificationState.SUBMITTED: {
        VerificationState.CACHED,
        VerificationState.NOT_CACHED,
        VerificationState.FAILED,
    },
    VerificationState.CACHED: {VerificationState.LINKED, VerificationState.FAILED},
    VerificationState.NOT_CACHED: set(),
    VerificationState.LINKED: set(),
    VerificationState.FAILED: set(),
}


class InvalidTransitionError(RuntimeError):
    """Raised on a transition the state machine does not allow."""

    pass


class VerificationFailed(DebridError):
    """A cached candidate turned out to be unusable (no playable file)."""

    pass


def map_episode_files(files: list[RemoteFile], season: int) -> dict[int, RemoteFile]:
    """Map episode numbers of one season to their video files.

    When a pack holds several files for an episode (samples, extras), the
    largest wins.
    """
    episodes: dict[int, RemoteFile] = {}
    for remote_file in files:
        if not remote_file.is_video:
            continue
        match = EPISODE_FILE_PATTERN.search(_basename(remote_file.filename))
        if not match or int(match.group(1)) != season:
            continue
        number = int(match.group(2))
        current = episodes.get(number)
        if current is None or remote_file.size > current.size:
            episodes[number] = remote_file
    return episodes


def _basename(filename: str) -> str:
    """Last path component of a remote file name."""
    return filename.rsplit("/", 1)[-1]


class CacheVerification:
    """One candidate's trip through the verification state machine."""

    def __init__(
        self,
        client: AllDebridClient,
        candidate: ReleaseCandidate,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.candidate = candidate
        self.settle_delay = settle_delay
        self._sleep = sleep

        self.state = VerificationState.UNSUBMITTED
        self.magnet_id = 0
        self.status_code: int | None = None
        self.files: list[RemoteFile] = []
        self.episodes: dict[int, RemoteFile] = {}
        self.unlocked: UnlockedLink | None = None
        self.error: str | None = None

    def _transition(self, new_state: VerificationState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}")
        logger.debug(
            "verification_transition",
            hash=self.candidate.info_hash,
            from_state=self.state.value,
            to_state=new_state.value,
        )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]

    async def submit(self) -> None:
        """Upload the candidate's magnet. UNSUBMITTED -> SUBMITTED.

        Raises:
            DebridError: If the upload fails (state is left UNSUBMITTED).
        """
        if not self.candidate.info_hash:
            raise InvalidTransitionError("candidate has no info hash")
        upload = await self.client.upload_magnet(self.candidate.magnet)
        self.magnet_id = upload.id
        self._transition(VerificationState.SUBMITTED)

    async def poll(self) -> bool:
        """Wait for the settling delay and check the status once.

        SUBMITTED -> CACHED when ready, otherwise -> NOT_CACHED with the
        submission withdrawn.

        Returns:
            True if the magnet is cached and ready.
        """
        if self.settle_delay > 0:
            await self._sleep(self.settle_delay)

        status = await self.client.get_status(self.magnet_id)
        self.status_code = status.status_code
        if status.is_ready:
            self._transition(VerificationState.CACHED)
            return True

        logger.info(
            "candidate_not_cached",
            hash=self.candidate.info_hash,
            magnet_id=self.magnet_id,
            status_code=status.status_code,
        )
        await self.withdraw()
        self._transition(VerificationState.NOT_CACHED)
        return False

    async def link(self, episode: int | None = None, season: int = 0) -> UnlockedLink:
        """Resolve a direct link. CACHED -> LINKED.

        Args:
            episode: For season packs, the episode to unlock; None picks the
                largest video file.
            season: Season of the pack (used with episode).

        Raises:
            VerificationFailed: If no suitable file exists.
            DebridError: If listing or unlocking fails.
        """
        self.files = await self.client.list_files(self.magnet_id)

        if episode is not None:
            self.episodes = map_episode_files(self.files, season)
            target = self.episodes.get(episode)
            if target is None:
                raise VerificationFailed(
                    f"episode {episode} not found in pack "
                    f"(episodes: {sorted(self.episodes)})"
                )
        else:
            target = pick_largest_video(self.files)
            if target is None:
                raise VerificationFailed("no playable file in magnet")

        self.unlocked = await self.client.unlock_link(target.link)
        self._transition(VerificationState.LINKED)
        return self.unlocked

    async def fail(self, reason: str) -> None:
        """Abort the verification, withdrawing any live submission.

        Safe to call from any non-terminal state; withdrawal errors are
        logged only.
        """
        if self.is_terminal:
            return
        self.error = reason
        if self.state in (VerificationState.SUBMITTED, VerificationState.CACHED):
            await self.withdraw()
        self._transition(VerificationState.FAILED)

    async def withdraw(self) -> None:
        if not self.magnet_id:
            return
        try:
            await self.client.delete_magnet(self.magnet_id)
        except DebridError as e:
            logger.warning(
                "magnet_withdraw_failed",
                magnet_id=self.magnet_id,
                hash=self.candidate.info_hash,
                error=str(e),
            )


# ============================================================================
# Verifier service
# ============================================================================


@dataclass
class VerificationResult:
    """Outcome of verifying one candidate for one item."""

    state: VerificationState
    item: MediaItem
    record: AcquisitionRecord | None = None
    link: str | None = None
    error: str | None = None
    episodes_in_pack: set[int] = field(default_factory=set)

    @property
    def acquired(self) -> bool:
        return self.state == VerificationState.LINKED


class CacheVerifier:
    """Runs candidates through the remote cache and persists the outcome."""

    def __init__(
        self,
        client: AllDebridClient,
        repository: BaseRepository,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the verifier.

        Args:
            client: Entered AllDebrid client.
            repository: Persistence for items and acquisition records.
            settle_delay: Seconds between upload and status check.
            sleep: Sleep function (injectable for tests).
        """
        self.client = client
        self.repository = repository
        self.settle_delay = settle_delay
        self._sleep = sleep

    async def verify(
        self,
        candidate: ReleaseCandidate,
        item: MediaItem,
        cancel_event: asyncio.Event | None = None,
        season_pack: bool | None = None,
    ) -> VerificationResult:
        """Try to acquire an item through one candidate.

        - Submit failure: nothing is persisted.
        - Not cached: a failed record is persisted so the hash is never
          tried again for this item.
        - Linked: the record and the item are persisted.

        Args:
            candidate: Release to verify.
            item: Item the release is for.
            cancel_event: Set to abort between stages.
            season_pack: Whether the release is a pack for the item's season;
                None guesses from the title.

        Raises:
            AcquisitionCancelled: If cancellation is requested between stages.
            RepositoryError: If persisting the outcome fails.
        """
        if season_pack is None:
            season_pack = candidate.is_season_pack
        as_pack = item.is_episode and season_pack
        verification = CacheVerification(self.client, candidate, self.settle_delay, self._sleep)
        log = logger.bind(item_id=item.id, hash=candidate.info_hash, title=candidate.title)

        try:
            raise_if_cancelled(cancel_event, "submit")
            try:
                await verification.submit()
            except DebridError as e:
                log.warning("candidate_submit_failed", error=str(e))
                await verification.fail(str(e))
                return VerificationResult(VerificationState.FAILED, item, error=str(e))

            raise_if_cancelled(cancel_event, "poll")
            if not await verification.poll():
                record = await self._save_failed(candidate, item, as_pack)
                return VerificationResult(VerificationState.NOT_CACHED, item, record=record)

            raise_if_cancelled(cancel_event, "link")
            if as_pack:
                unlocked = await verification.link(episode=item.episode, season=item.season)
            else:
                unlocked = await verification.link()

        except AcquisitionCancelled:
            await verification.fail("cancelled")
            raise
        except VerificationFailed as e:
            log.info("candidate_unusable", error=str(e))
            await verification.fail(str(e))
            record = await self._save_failed(candidate, item, as_pack)
            return VerificationResult(VerificationState.FAILED, item, record=record, error=str(e))
        except DebridError as e:
            log.warning(
                "candidate_verification_failed",
                state=verification.state.value,
                error=str(e),
            )
            await verification.fail(str(e))
            return VerificationResult(VerificationState.FAILED, item, error=str(e))

        try:
            record = await self._save_linked(verification, candidate, item, as_pack, unlocked)
        except Exception:
            # Nothing references the upload if it could not be recorded
            await verification.withdraw()
            raise

        log.info(
            "item_acquired",
            magnet_id=verification.magnet_id,
            season_pack=as_pack,
            episodes_in_pack=sorted(verification.episodes) if as_pack else None,
        )
        return VerificationResult(
            VerificationState.LINKED,
            item,
            record=record,
            link=unlocked.link,
            episodes_in_pack=set(verification.episodes),
        )

    async def link_from_pack(
        self,
        pack: AcquisitionRecord,
        item: MediaItem,
        cancel_event: asyncio.Event | None = None,
    ) -> VerificationResult:
        """Link an episode from a season pack that is already on the service.

        The pack is shared by several items, so nothing is withdrawn on
        failure.
        """
        log = logger.bind(item_id=item.id, pack_id=pack.id, magnet_id=pack.remote_id)
        if not pack.is_live:
            return VerificationResult(VerificationState.FAILED, item, error="pack is not live")

        try:
            raise_if_cancelled(cancel_event, "pack_files")
            files = await self.client.list_files(pack.remote_id)
            episodes = map_episode_files(files, pack.season)
            target = episodes.get(item.episode)
            if target is None:
                log.info("episode_not_in_pack", episode=item.episode, episodes=sorted(episodes))
                return VerificationResult(
                    VerificationState.FAILED,
                    item,
                    record=pack,
                    error=f"episode {item.episode} not in pack",
                    episodes_in_pack=set(episodes),
                )

            raise_if_cancelled(cancel_event, "pack_unlock")
            unlocked = await self.client.unlock_link(target.link)
        except DebridError as e:
            log.warning("pack_link_failed", error=str(e))
            return VerificationResult(VerificationState.FAILED, item, record=pack, error=str(e))

        pack.episodes_in_pack |= set(episodes)
        await self.repository.save_acquisition(pack)
        await self._mark_acquired(item, unlocked.link, pack.id)

        log.info("item_linked_from_pack", episode=item.episode)
        return VerificationResult(
            VerificationState.LINKED,
            item,
            record=pack,
            link=unlocked.link,
            episodes_in_pack=set(episodes),
        )

    # ------------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------------

    def _new_record(
        self, candidate: ReleaseCandidate, item: MediaItem, as_pack: bool
    ) -> AcquisitionRecord:
        return AcquisitionRecord(
            item_id=item.id,
            kind=AcquisitionKind.TORRENT,
            info_hash=candidate.info_hash,
            title=candidate.title,
            size=candidate.size,
            is_season_pack=as_pack,
            show_id=item.show_id if as_pack else None,
            season=item.season if as_pack else 0,
        )

    async def _save_failed(
        self, candidate: ReleaseCandidate, item: MediaItem, as_pack: bool
    ) -> AcquisitionRecord:
        record = self._new_record(candidate, item, as_pack)
        record.mark_failed()
        return await self.repository.save_acquisition(record)

    async def _save_linked(
        self,
        verification: CacheVerification,
        candidate: ReleaseCandidate,
        item: MediaItem,
        as_pack: bool,
        unlocked: UnlockedLink,
    ) -> AcquisitionRecord:
        record = self._new_record(candidate, item, as_pack)
        record.remote_id = verification.magnet_id
        if as_pack:
            record.episodes_in_pack = set(verification.episodes)
        record = await self.repository.save_acquisition(record)

        try:
            await self._mark_acquired(item, unlocked.link, record.id if as_pack else None)
        except Exception:
            # The caller withdraws the magnet; no live record may point at it
            item.acquired = False
            item.file = None
            item.season_pack_id = None
            if record.id is not None:
                await self.repository.delete_acquisition(record.id)
            raise
        return record

    async def _mark_acquired(self, item: MediaItem, link: str, pack_id: int | None) -> None:
        item.acquired = True
        item.file = link
        item.season_pack_id = pack_id
        await self.repository.save_item(item)
