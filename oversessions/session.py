from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field

from oversessions.models import StatsSnapshot

logger = logging.getLogger(__name__)

# Duration within which a change is considered recent
RECENT_WINDOW_SECONDS = 2.0


class Transition(enum.Enum):
    NO_CHANGE = "no_change"
    STARTED = "started"
    STOPPED = "stopped"


def classify(prev_playing: bool, next_playing: bool) -> Transition:
    if not prev_playing and next_playing:
        return Transition.STARTED
    if prev_playing and not next_playing:
        return Transition.STOPPED
    return Transition.NO_CHANGE


@dataclass
class SessionState:
    user_id: str
    battle_tag: str | None = None
    username: str = ""
    playing: bool = False
    snapshot: StatsSnapshot | None = None
    # Wall-clock time (seconds) of the last effective transition
    timestamp: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def display_name(self) -> str:
        return self.username or self.battle_tag or self.user_id

    def recently_updated(self, now: float, window: float = RECENT_WINDOW_SECONDS) -> bool:
        return self.timestamp is not None and now - self.timestamp < window

    def observe(self, playing: bool, now: float, window: float = RECENT_WINDOW_SECONDS) -> Transition:
        """Classify a presence observation without mutating the state.

        Transitions arriving within ``window`` of the previous one are
        treated as duplicates. A stop followed by an immediate restart
        therefore collapses into the first transition.
        """
        transition = classify(self.playing, playing)
        if transition is not Transition.NO_CHANGE and self.recently_updated(now, window):
            logger.debug(
                "Ignoring transition inside recent window: user_id=%s transition=%s",
                self.user_id,
                transition.value,
            )
            return Transition.NO_CHANGE
        return transition

    def apply(self, transition: Transition, now: float) -> None:
        if transition is Transition.NO_CHANGE:
            return
        self.playing = transition is Transition.STARTED
        if self.timestamp is None or now > self.timestamp:
            self.timestamp = now


class SessionRegistry:
    """Per-user SessionState entries, each guarded by its own lock."""

    def __init__(self) -> None:
        self._states: dict[str, SessionState] = {}

    @classmethod
    def from_battle_tags(cls, battle_tags: dict[str, str]) -> SessionRegistry:
        registry = cls()
        for user_id, battle_tag in battle_tags.items():
            registry.ensure(user_id).battle_tag = battle_tag
            logger.debug("Initialized player state: user_id=%s battle_tag=%s", user_id, battle_tag)
        return registry

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._states

    def get(self, user_id: str) -> SessionState | None:
        return self._states.get(user_id)

    def ensure(self, user_id: str) -> SessionState:
        state = self._states.get(user_id)
        if state is None:
            state = SessionState(user_id=user_id)
            self._states[user_id] = state
        return state

    def states(self) -> list[SessionState]:
        return list(self._states.values())

    def remove(self, user_id: str) -> None:
        # Only used while seeding, for accounts that turn out to be bots
        self._states.pop(user_id, None)

    async def bind_battle_tag(self, user_id: str, battle_tag: str) -> SessionState:
        state = self.ensure(user_id)
        async with state.lock:
            if state.battle_tag != battle_tag:
                state.snapshot = None
            state.battle_tag = battle_tag
        logger.info("BattleTag bound: user_id=%s battle_tag=%s", user_id, battle_tag)
        return state
