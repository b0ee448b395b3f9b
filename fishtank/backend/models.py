"""Domain models shared by the workflows and the ledger gateway."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .security import ZERO_RUN_ID


@dataclass(frozen=True)
class Receipt:
    tx_ref: str
    block_ref: int


@dataclass(frozen=True)
class PlayerState:
    best_score: int
    last_score: int
    runs: int
    last_played_at: int
    last_run_id: str

    @classmethod
    def zero(cls) -> "PlayerState":
        return cls(best_score=0, last_score=0, runs=0, last_played_at=0, last_run_id=ZERO_RUN_ID)


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player: str
    score: int


@dataclass(frozen=True)
class PaymentReceipt:
    """A transfer as seen on the ledger, used to verify refill payments."""

    tx_ref: str
    receiver: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RefillGrant:
    new_health: int
    health_increase: int
    previous_health: int
    player_address: str | None


@dataclass(frozen=True)
class SubmissionResult:
    tx_ref: str | None
    block_ref: int | None
    run_id: str
    score: int
    reconciled: bool = False
