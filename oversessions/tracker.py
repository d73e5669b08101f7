from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

from oversessions.messages import (
    build_error_message,
    build_pending_message,
    build_rank_message,
    build_report_message,
)
from oversessions.models import StatsSnapshot
from oversessions.reconcile import ReconcileResult, ReportKind, reconcile
from oversessions.session import RECENT_WINDOW_SECONDS, SessionRegistry, SessionState, Transition
from oversessions.stats_client import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    async def send(self, content: str) -> Any: ...

    async def edit(self, handle: Any, content: str) -> None: ...


class SnapshotSource(Protocol):
    async def fetch_snapshot(self, battle_tag: str, *, timeout: float = ...) -> StatsSnapshot | None: ...


class SessionTracker:
    """Turns presence notifications into session reports."""

    def __init__(
        self,
        registry: SessionRegistry,
        stats: SnapshotSource,
        publisher: Publisher | None = None,
        *,
        target_game: str = "Overwatch",
        command_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = 10,
        retry_interval: float = 60.0,
        recent_window: float = RECENT_WINDOW_SECONDS,
        notify_no_change: bool = False,
        pending_messages: bool = False,
        emoji_map: dict[str, str] | None = None,
        now_monotonic: Callable[[], float] = time.monotonic,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.publisher = publisher
        self._stats = stats
        self._target_game = target_game
        self._command_timeout = command_timeout
        self._max_attempts = max_attempts
        self._retry_interval = retry_interval
        self._recent_window = recent_window
        self._notify_no_change = notify_no_change
        self._pending_messages = pending_messages
        self._emoji_map = emoji_map or {}
        self._now = now_monotonic
        self._sleep = sleep_func
        self._tasks: set[asyncio.Task[Any]] = set()

    def is_target_game(self, game: str | None) -> bool:
        return game is not None and game == self._target_game

    # ------------------------------------------------------------------
    # Presence handling
    # ------------------------------------------------------------------

    async def handle_presence(self, user_id: str, username: str, game: str | None) -> Transition:
        state = self.registry.get(user_id)
        if state is None or not state.battle_tag:
            logger.info("No associated BattleTag: user_id=%s", user_id)
            return Transition.NO_CHANGE

        async with state.lock:
            if username:
                state.username = username
            now = self._now()
            transition = state.observe(self.is_target_game(game), now, self._recent_window)

            if transition is Transition.STARTED:
                state.apply(transition, now)
                logger.info("Session started: user_id=%s battle_tag=%s", user_id, state.battle_tag)
                await self._refresh_snapshot(state)
            elif transition is Transition.STOPPED:
                started_at = state.timestamp if state.timestamp is not None else now
                prev_snapshot = state.snapshot
                state.apply(transition, now)
                logger.info(
                    "Session stopped: user_id=%s battle_tag=%s length=%.0fs",
                    user_id,
                    state.battle_tag,
                    now - started_at,
                )
                await self._report_session(state, prev_snapshot, started_at, now)

            logger.debug("Player state transition: user_id=%s transition=%s state=%s", user_id, transition.value, state)
            return transition

    def dispatch_presence(self, user_id: str, username: str, game: str | None) -> asyncio.Task[Transition | None]:
        """Handle a presence notification in its own tracked task."""
        task = asyncio.create_task(self._run_presence(user_id, username, game))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_presence(self, user_id: str, username: str, game: str | None) -> Transition | None:
        try:
            return await self.handle_presence(user_id, username, game)
        except asyncio.CancelledError:
            logger.info("Presence handling cancelled: user_id=%s", user_id)
            raise
        except Exception:
            logger.exception("Presence handling failed: user_id=%s", user_id)
            return None

    # ------------------------------------------------------------------
    # Startup seeding
    # ------------------------------------------------------------------

    async def seed_presence(self, user_id: str, username: str, game: str | None, *, is_bot: bool = False) -> None:
        state = self.registry.get(user_id)
        if state is None:
            return
        if is_bot:
            logger.info("Dropping bot account from roster: user_id=%s", user_id)
            self.registry.remove(user_id)
            return
        async with state.lock:
            state.username = username or state.username
            if self.is_target_game(game):
                state.playing = True
                state.timestamp = self._now()

    async def initialize_active_players(self) -> None:
        for state in self.registry.states():
            if not state.battle_tag:
                logger.warning("Can't get player stats without a BattleTag: user_id=%s", state.user_id)
                continue
            if not state.playing:
                continue
            logger.debug("Initializing player stats: user_id=%s", state.user_id)
            async with state.lock:
                await self._refresh_snapshot(state)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def _fetch(self, battle_tag: str) -> StatsSnapshot | None:
        return await self._stats.fetch_snapshot(battle_tag, timeout=self._command_timeout)

    async def _refresh_snapshot(self, state: SessionState) -> bool:
        assert state.battle_tag is not None
        try:
            snapshot = await self._fetch(state.battle_tag)
        except Exception as exc:
            logger.warning("Failed to get stats or hero data: user_id=%s error=%s", state.user_id, exc)
            return False
        if snapshot is None:
            return False
        state.snapshot = snapshot
        return True

    async def current_snapshot(self, user_id: str) -> StatsSnapshot | None:
        """Return the cached snapshot, fetching one when nothing is cached."""
        state = self.registry.get(user_id)
        if state is None or not state.battle_tag:
            return None
        # Never queue behind a running reconciliation
        if state.snapshot is not None or state.lock.locked():
            return state.snapshot
        async with state.lock:
            if state.snapshot is None:
                await self._refresh_snapshot(state)
            return state.snapshot

    async def _report_session(
        self,
        state: SessionState,
        prev_snapshot: StatsSnapshot | None,
        started_at: float,
        ended_at: float,
    ) -> ReconcileResult | None:
        assert state.battle_tag is not None
        battle_tag = state.battle_tag
        name = state.display_name

        handle = None
        if self._pending_messages:
            handle = await self._publish(build_pending_message(name))

        try:
            result = await reconcile(
                prev_snapshot,
                lambda: self._fetch(battle_tag),
                username=name,
                started_at=started_at,
                ended_at=ended_at,
                max_attempts=self._max_attempts,
                retry_interval=self._retry_interval,
                sleep_func=self._sleep,
            )
        except Exception:
            logger.exception("Session report failed: user_id=%s", state.user_id)
            if handle is not None:
                await self._edit(handle, build_error_message(name))
            return None

        if result.snapshot is not None:
            state.snapshot = result.snapshot

        content = build_report_message(
            result,
            notify_no_change=self._notify_no_change,
            emoji_map=self._emoji_map,
        )
        if handle is not None:
            # A pending message must never be left dangling
            if content is None and result.rank is not None:
                content = build_rank_message(name, result.rank)
            elif content is None:
                content = build_error_message(name)
            await self._edit(handle, content)
        elif content is not None:
            await self._publish(content)
        elif result.kind is ReportKind.NO_CHANGE:
            logger.info("Session ended without stat changes: user_id=%s", state.user_id)
        return result

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def _publish(self, content: str) -> Any:
        if self.publisher is None:
            logger.warning("No publisher configured, dropping message: %s", content)
            return None
        try:
            return await self.publisher.send(content)
        except Exception as exc:
            logger.warning("Failed to publish message: error=%s", exc)
            return None

    async def _edit(self, handle: Any, content: str) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.edit(handle, content)
        except Exception as exc:
            logger.warning("Failed to edit message, sending a new one: error=%s", exc)
            await self._publish(content)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
