from __future__ import annotations

from oversessions.models import WDL, HeroRecord, SessionDiff, StatsSnapshot

_EMPTY_HERO = HeroRecord()


def snapshots_differ(prev: StatsSnapshot | None, next_: StatsSnapshot | None) -> bool:
    return prev != next_


def hero_wdl(prev: HeroRecord | None, next_: HeroRecord) -> WDL:
    baseline = prev if prev is not None else _EMPTY_HERO
    return WDL(
        win=int(next_.games_won - baseline.games_won),
        draw=int(next_.games_drawn - baseline.games_drawn),
        loss=int(next_.games_lost - baseline.games_lost),
    )


def heroes_wdl(prev: StatsSnapshot, next_: StatsSnapshot) -> dict[str, WDL]:
    # Heroes only present in prev are dropped; their counts cannot have moved
    return {name: hero_wdl(prev.hero(name), record) for name, record in next_.heroes.items()}


def split_duration(seconds: float) -> tuple[int, int]:
    minutes = max(0, int(seconds // 60))
    return minutes // 60, minutes % 60


def diff_snapshots(
    prev: StatsSnapshot,
    next_: StatsSnapshot,
    *,
    username: str,
    started_at: float,
    ended_at: float,
) -> SessionDiff:
    hours, minutes = split_duration(ended_at - started_at)
    return SessionDiff(
        username=username,
        final_rank=next_.comp_rank,
        rank_delta=next_.comp_rank - prev.comp_rank,
        hours=hours,
        minutes=minutes,
        heroes_wdl=heroes_wdl(prev, next_),
    )
