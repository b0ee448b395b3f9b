"""Read-model builders for player state and leaderboard payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from .models import LeaderboardEntry, PlayerState
from .security import ZERO_ADDRESS


def _utc_iso(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).isoformat()


def display_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def rank_top_slots(addresses: Sequence[str], scores: Sequence[int]) -> list[LeaderboardEntry]:
    """Drop empty slots (zero address or zero score) and rank by score."""
    filled = [
        (str(address), int(score))
        for address, score in zip(addresses, scores)
        if str(address).lower() != ZERO_ADDRESS and int(score) > 0
    ]
    filled.sort(key=lambda slot: -slot[1])
    return [LeaderboardEntry(rank=index, player=address, score=score) for index, (address, score) in enumerate(filled, 1)]


def build_player_payload(player: str, state: PlayerState, difficulty: int) -> dict[str, Any]:
    return {
        "player": player,
        "state": {
            "bestScore": str(state.best_score),
            "lastScore": str(state.last_score),
            "runs": str(state.runs),
            "lastPlayedAt": str(state.last_played_at),
            "lastRunId": state.last_run_id,
        },
        "difficulty": str(difficulty),
    }


def build_leaderboard_payload(
    entries: Sequence[LeaderboardEntry], now: float, limit: int | None = None
) -> dict[str, Any]:
    """Count every ranked entry, then list the first limit of them."""
    shown = entries if limit is None else entries[:limit]
    return {
        "leaderboard": [
            {
                "rank": entry.rank,
                "player": entry.player,
                "address": entry.player,
                "displayAddress": display_address(entry.player),
                "score": entry.score,
            }
            for entry in shown
        ],
        "totalPlayers": len(entries),
        "timestamp": _utc_iso(now),
    }
