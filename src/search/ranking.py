"""Quality ranking of release candidates.

Torrents: remux first, then resolution, then size (all descending).
NZBs: the largest release per resolution tier, best tier first.
"""

from src.search.models import ReleaseCandidate


def quality_key(candidate: ReleaseCandidate) -> tuple[int, int, int]:
    """Sort key for torrent candidates: (remux, resolution, size)."""
    return (1 if candidate.is_remux else 0, candidate.resolution, candidate.size)


def rank_candidates(candidates: list[ReleaseCandidate]) -> list[ReleaseCandidate]:
    """Order candidates from most to least preferred.

    The sort is stable: candidates with identical keys keep their input
    order.
    """
    return sorted(candidates, key=quality_key, reverse=True)


def dedupe_by_hash(candidates: list[ReleaseCandidate]) -> list[ReleaseCandidate]:
    """Drop later candidates sharing an info hash with an earlier one.

    Candidates without a hash are all kept.
    """
    seen: set[str] = set()
    unique: list[ReleaseCandidate] = []
    for candidate in candidates:
        if candidate.info_hash:
            if candidate.info_hash in seen:
                continue
            seen.add(candidate.info_hash)
        unique.append(candidate)
    return unique


# ---------------------------------------------------------------------------
# NZB selection
# ---------------------------------------------------------------------------

NZB_TIERS = (2160, 1080, 720)
NZB_OTHER_TIER = 0


def nzb_tier(candidate: ReleaseCandidate) -> int:
    """Map a candidate to its NZB resolution tier (2160, 1080, 720 or 0)."""
    resolution = candidate.resolution
    for tier in NZB_TIERS:
        if resolution >= tier:
            return tier
    return NZB_OTHER_TIER


def rank_nzbs(candidates: list[ReleaseCandidate]) -> list[ReleaseCandidate]:
    """Keep the largest NZB per resolution tier, best tier first.

    Args:
        candidates: NZB candidates for one item.

    Returns:
        At most one candidate per tier, ordered 2160p, 1080p, 720p, other.
    """
    best: dict[int, ReleaseCandidate] = {}
    for candidate in candidates:
        tier = nzb_tier(candidate)
        current = best.get(tier)
        if current is None or candidate.size > current.size:
            best[tier] = candidate

    return [best[tier] for tier in sorted(best, reverse=True)]


def select_best_nzb(candidates: list[ReleaseCandidate]) -> ReleaseCandidate | None:
    """Return the preferred NZB, or None when there are no candidates."""
    ranked = rank_nzbs(candidates)
    return ranked[0] if ranked else None
