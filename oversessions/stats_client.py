"""Rate-limited client for the OWAPI statistics provider."""
from __future__ import annotations

import asyncio
import json
import logging
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import aiohttp

from oversessions.models import HeroRecord, OverallStats, StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://owapi.net/api/v3/"
DEFAULT_TIMEOUT_SECONDS = 10.0
INTER_CALL_DELAY_SECONDS = 1.0
USER_AGENT = "oversessions-bot/1.0"

# Tie-break order for the dynamic region policy
REGION_PRIORITY = ("us", "eu", "kr")


class StatsError(RuntimeError):
    """Base class for stats provider failures."""


class StatsRequestCancelled(StatsError):
    """Raised when the caller deadline elapses before a permit or response."""


class UpstreamError(StatsError):
    def __init__(self, status: int, method: str, url: str) -> None:
        super().__init__(f"{method} {url}: {status}")
        self.status = status
        self.method = method
        self.url = url


class StatsDecodeError(StatsError):
    """Raised when a response body cannot be parsed at all."""


def url_battle_tag(battle_tag: str) -> str:
    return battle_tag.replace("#", "-")


def _finite(value: int | float) -> bool:
    # JSON NaN and Infinity literals decode to non-finite floats
    return not isinstance(value, float) or math.isfinite(value)


def _to_int(value: Any, field_name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not _finite(value):
        logger.warning("Ignoring type error when decoding field: field=%s value=%r", field_name, value)
        return 0
    return int(value)


def _to_float(value: Any, field_name: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not _finite(value):
        logger.warning("Ignoring type error when decoding field: field=%s value=%r", field_name, value)
        return 0.0
    return float(value)


def _as_dict(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning("Ignoring type error when decoding field: field=%s value=%r", field_name, value)
        return {}
    return value


def _competitive_stats(region_blob: Any) -> dict[str, Any] | None:
    stats = _as_dict(_as_dict(region_blob, "region").get("stats"), "stats")
    competitive = stats.get("competitive")
    if competitive is None:
        return None
    return _as_dict(competitive, "stats.competitive")


def select_region(payload: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    """Pick the region with the most competitive games played.

    Ties keep the earlier region in ``REGION_PRIORITY``. Regions without
    competitive data or with zero games are skipped; ``None`` when no
    region qualifies.
    """
    best: tuple[str, dict[str, Any]] | None = None
    most_played = 0
    for region in REGION_PRIORITY:
        competitive = _competitive_stats(payload.get(region))
        if competitive is None:
            continue
        overall = _as_dict(competitive.get("overall_stats"), "overall_stats")
        played = _to_int(overall.get("games"), "overall_stats.games")
        if played > most_played:
            most_played = played
            best = (region, competitive)
    return best


def parse_overall_stats(competitive: dict[str, Any]) -> tuple[int, OverallStats]:
    overall = _as_dict(competitive.get("overall_stats"), "overall_stats")
    comp_rank = _to_int(overall.get("comprank"), "overall_stats.comprank")
    stats = OverallStats(
        games=_to_int(overall.get("games"), "overall_stats.games"),
        wins=_to_int(overall.get("wins"), "overall_stats.wins"),
        losses=_to_int(overall.get("losses"), "overall_stats.losses"),
        level=_to_int(overall.get("level"), "overall_stats.level"),
        prestige=_to_int(overall.get("prestige"), "overall_stats.prestige"),
        win_rate=_to_float(overall.get("win_rate"), "overall_stats.win_rate"),
    )
    return comp_rank, stats


def parse_heroes(payload: dict[str, Any], region: str) -> dict[str, HeroRecord]:
    """Extract competitive per-hero counters for ``region``.

    Heroes missing from the payload stay absent from the mapping.
    """
    region_blob = _as_dict(payload.get(region), region)
    heroes = _as_dict(region_blob.get("heroes"), "heroes")
    stats = _as_dict(heroes.get("stats"), "heroes.stats")
    competitive = _as_dict(stats.get("competitive"), "heroes.stats.competitive")

    records: dict[str, HeroRecord] = {}
    for name, hero_blob in competitive.items():
        if hero_blob is None:
            continue
        general = _as_dict(_as_dict(hero_blob, name).get("general_stats"), f"{name}.general_stats")
        records[name] = HeroRecord(
            games_won=_to_float(general.get("games_won"), f"{name}.games_won"),
            games_played=_to_float(general.get("games_played"), f"{name}.games_played"),
            games_lost=_to_float(general.get("games_lost"), f"{name}.games_lost"),
        )
    return records


class StatsClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        session: aiohttp.ClientSession | None = None,
        inter_call_delay: float = INTER_CALL_DELAY_SECONDS,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._session = session
        self._owns_session = session is None
        self._inter_call_delay = inter_call_delay
        self._sleep = sleep_func
        # Single request token shared by every caller; OWAPI bans bursts
        self._permit = asyncio.Semaphore(1)

    async def __aenter__(self) -> StatsClient:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True
        return self._session

    @asynccontextmanager
    async def _request_permit(self, deadline: float) -> AsyncIterator[None]:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise StatsRequestCancelled("deadline elapsed before a request permit was available")
        try:
            await asyncio.wait_for(self._permit.acquire(), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise StatsRequestCancelled("timed out waiting for a request permit") from exc
        try:
            yield
        finally:
            self._permit.release()

    async def _get_json(self, path: str, deadline: float) -> dict[str, Any]:
        url = self._base_url + path
        async with self._request_permit(deadline):
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise StatsRequestCancelled(f"deadline elapsed before GET {url}")
            try:
                async with self._get_session().get(
                    url, timeout=aiohttp.ClientTimeout(total=remaining)
                ) as resp:
                    if not 200 <= resp.status <= 299:
                        logger.warning("Bad response: method=GET url=%s status=%d", url, resp.status)
                        raise UpstreamError(resp.status, "GET", url)
                    body = await resp.read()
            except asyncio.TimeoutError as exc:
                raise StatsRequestCancelled(f"timed out waiting for GET {url}") from exc

        try:
            payload = json.loads(body)
        except (ValueError, RecursionError) as exc:
            logger.error("Could not decode response as JSON: url=%s error=%s", url, exc)
            raise StatsDecodeError(f"invalid JSON from {url}") from exc
        if not isinstance(payload, dict):
            logger.error("Unexpected JSON document: url=%s type=%s", url, type(payload).__name__)
            raise StatsDecodeError(f"expected a JSON object from {url}")

        logger.debug("Request was successful: method=GET url=%s", url)
        return payload

    async def fetch_snapshot(
        self,
        battle_tag: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> StatsSnapshot | None:
        """Fetch stats then heroes for ``battle_tag`` within ``timeout`` seconds.

        Returns ``None`` when the player has no competitive data in any region.
        Raises ``StatsError`` subclasses or ``aiohttp.ClientError`` on failure.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        tag_path = url_battle_tag(battle_tag)

        stats_payload = await self._get_json(f"u/{tag_path}/stats", deadline)
        selected = select_region(stats_payload)
        if selected is None:
            logger.info("No region with competitive stats: battle_tag=%s", battle_tag)
            return None
        region, competitive = selected
        comp_rank, overall = parse_overall_stats(competitive)

        # Without a delay OWAPI sometimes answers 429 to the follow-up call
        remaining = deadline - loop.time()
        if remaining <= self._inter_call_delay:
            raise StatsRequestCancelled("deadline too close for the heroes request")
        await self._sleep(self._inter_call_delay)

        heroes_payload = await self._get_json(f"u/{tag_path}/heroes", deadline)
        heroes = parse_heroes(heroes_payload, region)

        return StatsSnapshot(
            comp_rank=comp_rank,
            heroes=heroes,
            overall=overall,
            battle_tag=battle_tag,
            region=region.upper(),
        )
