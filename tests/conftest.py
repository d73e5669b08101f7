from __future__ import annotations

import pytest

from oversessions.models import HeroRecord, OverallStats, StatsSnapshot


def make_snapshot(comp_rank: int = 2500, **heroes: tuple[float, float, float]) -> StatsSnapshot:
    """Build a snapshot from ``hero=(won, played, lost)`` keyword arguments."""
    return StatsSnapshot(
        comp_rank=comp_rank,
        heroes={
            name: HeroRecord(games_won=won, games_played=played, games_lost=lost)
            for name, (won, played, lost) in heroes.items()
        },
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePublisher:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.edits: list[tuple[int, str]] = []

    async def send(self, content: str) -> int:
        self.sent.append(content)
        return len(self.sent) - 1

    async def edit(self, handle: int, content: str) -> None:
        self.edits.append((handle, content))


class FakeStats:
    """Returns queued snapshots (or raises queued exceptions) in order.

    The last entry repeats once the queue is down to one item.
    """

    def __init__(self, results: list[object] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[str] = []

    async def fetch_snapshot(self, battle_tag: str, *, timeout: float = 10.0) -> StatsSnapshot | None:
        self.calls.append(battle_tag)
        if not self.results:
            return None
        outcome = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def sample_stats_payload() -> dict:
    return {
        "us": {
            "stats": {
                "competitive": {
                    "overall_stats": {
                        "comprank": 2550,
                        "games": 120,
                        "wins": 60,
                        "losses": 55,
                        "level": 42,
                        "prestige": 1,
                        "win_rate": 50.0,
                    },
                    "game_stats": {"deaths": 10.0},
                }
            }
        },
        "eu": {
            "stats": {
                "competitive": {
                    "overall_stats": {"comprank": 2100, "games": 30},
                }
            }
        },
        "kr": None,
    }


@pytest.fixture
def sample_heroes_payload() -> dict:
    return {
        "us": {
            "heroes": {
                "stats": {
                    "competitive": {
                        "ana": {"general_stats": {"games_won": 12.0, "games_played": 23.0, "games_lost": 9.0}},
                        "mercy": {"general_stats": {"games_won": 3.0, "games_played": 5.0, "games_lost": 2.0}},
                        "genji": None,
                    },
                    "quickplay": {},
                }
            }
        },
        "eu": {
            "heroes": {
                "stats": {
                    "competitive": {
                        "tracer": {"general_stats": {"games_won": 1.0, "games_played": 1.0, "games_lost": 0.0}},
                    }
                }
            }
        },
    }


@pytest.fixture
def sample_overall() -> OverallStats:
    return OverallStats(games=120, wins=60, losses=55, level=42, prestige=1, win_rate=50.0)


@pytest.fixture
def mock_config(tmp_path):
    """Create a Config with temporary paths."""
    from oversessions.config import Config

    return Config(
        discord_bot_token="fake-token",
        battle_tag_file=tmp_path / "battletags.txt",
        log_dir=tmp_path / "logs",
    )


DISCORD_USER_A = "111111111111111111"
DISCORD_USER_B = "222222222222222222"
