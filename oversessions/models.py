from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class HeroRecord:
    games_won: float = 0.0
    games_played: float = 0.0
    games_lost: float = 0.0

    @property
    def games_drawn(self) -> float:
        return self.games_played - self.games_won - self.games_lost


@dataclass(frozen=True)
class OverallStats:
    games: int = 0
    wins: int = 0
    losses: int = 0
    level: int = 0
    prestige: int = 0
    win_rate: float = 0.0


@dataclass(frozen=True)
class StatsSnapshot:
    comp_rank: int
    heroes: dict[str, HeroRecord] = field(default_factory=dict)
    overall: OverallStats | None = None
    # Informational only, excluded from equality
    battle_tag: str = field(default="", compare=False)
    region: str = field(default="", compare=False)

    def hero(self, name: str) -> HeroRecord | None:
        return self.heroes.get(name)


@dataclass(frozen=True)
class WDL:
    win: int = 0
    draw: int = 0
    loss: int = 0


@dataclass(frozen=True)
class SessionDiff:
    username: str
    final_rank: int
    rank_delta: int
    hours: int
    minutes: int
    heroes_wdl: dict[str, WDL] = field(default_factory=dict)
