"""Run records: one finished game session, built and checked before submission."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ErrorCategory, RunValidationError
from .security import generate_nonce, is_address, sha256_hex


@dataclass(frozen=True)
class RunRecord:
    player: str
    score: int
    run_id: str
    started_at: int
    ended_at: int

    @property
    def duration(self) -> int:
        return self.ended_at - self.started_at


def make_run_id(player: str, now: float, nonce: str) -> str:
    """Derive a 32-byte id as 0x + sha256(player:now:nonce)."""
    return "0x" + sha256_hex(f"{player}:{now!r}:{nonce}")


def build_run_record(
    player: str,
    score: int,
    now: float,
    session_seconds: int,
    nonce: str | None = None,
) -> RunRecord:
    ended_at = int(now)
    return RunRecord(
        player=player,
        score=score,
        run_id=make_run_id(player, now, nonce or generate_nonce()),
        started_at=ended_at - session_seconds,
        ended_at=ended_at,
    )


def validate_run(record: RunRecord, score_max: int, max_session_seconds: int) -> None:
    if not is_address(record.player):
        raise RunValidationError(ErrorCategory.INVALID_PLAYER, f"not an account address: {record.player!r}")
    if record.score < 0:
        raise RunValidationError(ErrorCategory.SCORE_EXCEEDS_MAX, f"score {record.score} is out of range (must be >= 0)")
    if record.score > score_max:
        raise RunValidationError(ErrorCategory.SCORE_EXCEEDS_MAX, f"score {record.score} > max {score_max}")
    if record.ended_at <= record.started_at:
        raise RunValidationError(ErrorCategory.INVALID_TIME_WINDOW, "session must end after it starts")
    if record.duration > max_session_seconds:
        raise RunValidationError(
            ErrorCategory.INVALID_TIME_WINDOW,
            f"session of {record.duration}s exceeds {max_session_seconds}s",
        )
