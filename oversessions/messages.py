from __future__ import annotations

from oversessions.models import SessionDiff
from oversessions.reconcile import ReconcileResult, ReportKind


def format_duration(hours: int, minutes: int) -> str:
    if hours > 0:
        return f"{hours} hrs {minutes} min"
    return f"{minutes} min"


def format_rank_delta(delta: int) -> str:
    return f"+{delta}" if delta >= 0 else str(delta)


def hero_icon(hero: str, emoji_map: dict[str, str] | None = None) -> str:
    if emoji_map and hero in emoji_map:
        return emoji_map[hero]
    return f"`{hero}` "


def _icons(diff: SessionDiff, attr: str, emoji_map: dict[str, str] | None) -> str:
    parts: list[str] = []
    for hero in sorted(diff.heroes_wdl):
        count = getattr(diff.heroes_wdl[hero], attr)
        parts.extend(hero_icon(hero, emoji_map) for _ in range(max(0, count)))
    return "".join(parts).strip()


def build_diff_message(diff: SessionDiff, emoji_map: dict[str, str] | None = None) -> str:
    lines = [
        f"**{diff.username}**:",
        f"length: {format_duration(diff.hours, diff.minutes)}",
        f"wins: {_icons(diff, 'win', emoji_map)}",
        f"draws: {_icons(diff, 'draw', emoji_map)}",
        f"losses: {_icons(diff, 'loss', emoji_map)}",
        f"SR: {diff.final_rank} ({format_rank_delta(diff.rank_delta)})",
    ]
    return "\n".join(lines)


def build_rank_message(username: str, rank: int) -> str:
    return f"**{username}**: SR {rank}"


def build_pending_message(username: str) -> str:
    return f"**{username}**: *(session ended, waiting for stats...)*"


def build_error_message(username: str) -> str:
    return f"**{username}**: *(error retrieving data)*"


def build_report_message(
    result: ReconcileResult,
    *,
    notify_no_change: bool = False,
    emoji_map: dict[str, str] | None = None,
) -> str | None:
    """Render a reconciliation result, or ``None`` when nothing is posted."""
    if result.kind is ReportKind.DIFF and result.diff is not None:
        return build_diff_message(result.diff, emoji_map)
    if result.kind is ReportKind.NO_BASELINE and result.rank is not None:
        return build_rank_message(result.username, result.rank)
    if result.kind is ReportKind.NO_CHANGE and notify_no_change and result.rank is not None:
        return build_rank_message(result.username, result.rank)
    return None
