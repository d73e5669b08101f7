"""Retry-until-different polling of post-session stats.

OWAPI only refreshes a profile after the player has closed the game, and the
change sometimes shows up several minutes later, so the first fetch after a
session frequently still returns the pre-session numbers.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import aiohttp

from oversessions.diff import diff_snapshots, snapshots_differ
from oversessions.models import SessionDiff, StatsSnapshot
from oversessions.stats_client import StatsError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 10
RETRY_INTERVAL_SECONDS = 60.0


class ReportKind(enum.Enum):
    DIFF = "diff"
    NO_BASELINE = "no_baseline"
    NO_CHANGE = "no_change"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class PollResult:
    candidate: StatsSnapshot | None
    attempts: int
    resolved: bool


@dataclass(frozen=True)
class ReconcileResult:
    kind: ReportKind
    username: str
    snapshot: StatsSnapshot | None = None
    rank: int | None = None
    diff: SessionDiff | None = None
    attempts: int = 0


async def poll_until_changed(
    prev: StatsSnapshot | None,
    fetch: Callable[[], Awaitable[StatsSnapshot | None]],
    *,
    max_attempts: int = MAX_ATTEMPTS,
    retry_interval: float = RETRY_INTERVAL_SECONDS,
    sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    label: str = "",
) -> PollResult:
    """Fetch until the result differs from ``prev`` or attempts run out.

    A failed attempt, or one without competitive data, counts as "not
    changed yet". The last successfully fetched candidate is kept so an
    exhausted budget still has data to report.
    """
    candidate: StatsSnapshot | None = None
    attempts = max(1, int(max_attempts))
    for attempt in range(attempts):
        logger.debug("Stats attempt: user=%s attempt=%d/%d", label, attempt + 1, attempts)
        try:
            fetched = await fetch()
        except (StatsError, aiohttp.ClientError) as exc:
            logger.warning(
                "Stats attempt failed: user=%s attempt=%d/%d error=%s",
                label,
                attempt + 1,
                attempts,
                exc,
            )
        else:
            if fetched is None:
                logger.debug("No competitive stats yet: user=%s attempt=%d", label, attempt + 1)
            else:
                candidate = fetched
                if snapshots_differ(prev, fetched):
                    logger.debug("Successfully retrieved updated stats: user=%s attempt=%d", label, attempt + 1)
                    return PollResult(candidate=fetched, attempts=attempt + 1, resolved=True)

        if attempt + 1 < attempts:
            await sleep_func(retry_interval)

    logger.info("Stats unchanged after retry budget: user=%s attempts=%d", label, attempts)
    return PollResult(candidate=candidate, attempts=attempts, resolved=False)


def build_result(
    prev: StatsSnapshot | None,
    candidate: StatsSnapshot | None,
    *,
    username: str,
    started_at: float,
    ended_at: float,
    attempts: int = 0,
) -> ReconcileResult:
    if prev is None and candidate is None:
        logger.warning("No user stats found: user=%s", username)
        return ReconcileResult(ReportKind.NO_DATA, username=username, attempts=attempts)
    if prev is None:
        logger.warning("No previous user stats found: user=%s", username)
        return ReconcileResult(
            ReportKind.NO_BASELINE, username=username, snapshot=candidate, rank=candidate.comp_rank, attempts=attempts
        )
    if candidate is None:
        logger.warning("No next user stats found: user=%s", username)
        return ReconcileResult(
            ReportKind.NO_BASELINE, username=username, snapshot=prev, rank=prev.comp_rank, attempts=attempts
        )
    if not snapshots_differ(prev, candidate):
        return ReconcileResult(
            ReportKind.NO_CHANGE, username=username, snapshot=candidate, rank=candidate.comp_rank, attempts=attempts
        )

    diff = diff_snapshots(prev, candidate, username=username, started_at=started_at, ended_at=ended_at)
    logger.info("Session diff computed: user=%s diff=%s", username, diff)
    return ReconcileResult(
        ReportKind.DIFF,
        username=username,
        snapshot=candidate,
        rank=candidate.comp_rank,
        diff=diff,
        attempts=attempts,
    )


async def reconcile(
    prev: StatsSnapshot | None,
    fetch: Callable[[], Awaitable[StatsSnapshot | None]],
    *,
    username: str,
    started_at: float,
    ended_at: float,
    max_attempts: int = MAX_ATTEMPTS,
    retry_interval: float = RETRY_INTERVAL_SECONDS,
    sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> ReconcileResult:
    poll = await poll_until_changed(
        prev,
        fetch,
        max_attempts=max_attempts,
        retry_interval=retry_interval,
        sleep_func=sleep_func,
        label=username,
    )
    return build_result(
        prev,
        poll.candidate,
        username=username,
        started_at=started_at,
        ended_at=ended_at,
        attempts=poll.attempts,
    )
