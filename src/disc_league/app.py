from __future__ import annotations

from typing import Iterable

from .doubles import DoublesLeague
from .ladder import TagHolder
from .leaderboard import RankedRow, score_label
from .league import LeagueEngine
from .putting import PuttingLeague


def format_tag_standings(holders: Iterable[TagHolder]) -> str:
    lines = ["Tag Player"]
    for holder in holders:
        tag = "-" if holder.tag is None else str(holder.tag)
        lines.append(f"{tag:>3} {holder.name}")
    return "\n".join(lines)


def format_leaderboard(rows: Iterable[RankedRow], title: str = "Leaderboard", relative: bool = True) -> str:
    """Render ranked rows; tied ranks print as ``T2``. Doubles scores read relative to par."""
    ranked = list(rows)
    counts: dict[int, int] = {}
    for row in ranked:
        if row.rank is not None:
            counts[row.rank] = counts.get(row.rank, 0) + 1
    lines = [title, "Pos  Entry                          Score  Adj"]
    for row in ranked:
        if row.rank is None:
            pos = "-"
        else:
            pos = f"T{row.rank}" if counts[row.rank] > 1 else str(row.rank)
        if relative:
            score = score_label(row.final_score)
        else:
            score = "-" if row.final_score is None else str(row.final_score)
        adj = f"{row.adjustment:+d}" if row.adjustment else ""
        lines.append(f"{pos:<4} {row.label:<30} {score:>5} {adj:>4}".rstrip())
    return "\n".join(lines)


def format_doubles_cards(doubles: DoublesLeague) -> str:
    lines = []
    for card in doubles.cards:
        mark = doubles.rounds.watermark(card.id)
        lines.append(f"{card.name} (hole {card.start_slot}, submitted {mark}/{doubles.rounds.total_rounds})")
        for key in card.row_keys:
            label, _members = doubles.row_label(key)
            lines.append(f"  {label}")
    return "\n".join(lines)


def format_putting_leaderboards(putting: PuttingLeague) -> str:
    boards = putting.leaderboards()
    sections = [f"Putting (round {putting.current_round} of {putting.settings.total_rounds}, points)"]
    sections.extend(
        format_leaderboard(rows, title=f"Pool {board}" if len(board) == 1 else "All players", relative=False)
        for board, rows in boards.items()
    )
    return "\n\n".join(sections)


def format_league_report(engine: LeagueEngine) -> str:
    state = engine.state
    title = state.display_name or state.league_id
    sections = [
        title,
        format_tag_standings(engine.ladder_standings()),
        format_leaderboard(engine.doubles_leaderboard(), title=f"Doubles ({state.doubles.stage.value.replace('_', ' ')})"),
    ]
    if state.putting.players:
        sections.append(format_putting_leaderboards(state.putting))
    return "\n\n".join(sections)
