"""Closed error taxonomy and ledger error classification.

Ledger failures arrive as free text (contract revert strings, RPC errors,
transport exceptions). ``classify_ledger_error`` is the only place that
pattern-matches that text. Every raw error maps to exactly one
``ErrorCategory``; anything unrecognised becomes ``UNKNOWN``.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Iterable


class ErrorCategory(str, Enum):
    PAYMENT_REQUIRED = "payment_required"
    INVALID_PAYMENT_PROOF = "invalid_payment_proof"
    SCORE_EXCEEDS_MAX = "score_exceeds_max"
    INVALID_TIME_WINDOW = "invalid_time_window"
    DUPLICATE_RUN_ID = "duplicate_run_id"
    COOLDOWN_ACTIVE = "cooldown_active"
    LEDGER_PAUSED = "ledger_paused"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSIENT_NETWORK = "transient_network"
    INVALID_PLAYER = "invalid_player"
    INVALID_HEALTH_VALUE = "invalid_health_value"
    INVALID_RISK_EVENT = "invalid_risk_event"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.PAYMENT_REQUIRED: "payment required",
    ErrorCategory.INVALID_PAYMENT_PROOF: "payment could not be verified",
    ErrorCategory.SCORE_EXCEEDS_MAX: "score exceeds maximum allowed",
    ErrorCategory.INVALID_TIME_WINDOW: "invalid game session time range",
    ErrorCategory.DUPLICATE_RUN_ID: "this session id was already used",
    ErrorCategory.COOLDOWN_ACTIVE: "please wait before submitting again",
    ErrorCategory.LEDGER_PAUSED: "submissions are temporarily paused",
    ErrorCategory.INSUFFICIENT_FUNDS: "insufficient funds for transaction",
    ErrorCategory.TRANSIENT_NETWORK: "ledger is unreachable, please try again later",
    ErrorCategory.INVALID_PLAYER: "invalid player address",
    ErrorCategory.INVALID_HEALTH_VALUE: "invalid health value",
    ErrorCategory.INVALID_RISK_EVENT: "invalid risk event",
    ErrorCategory.UNKNOWN: "failed to submit to ledger",
}


STATUS_CODES: dict[ErrorCategory, int] = {
    ErrorCategory.PAYMENT_REQUIRED: 402,
    ErrorCategory.INVALID_PAYMENT_PROOF: 400,
    ErrorCategory.SCORE_EXCEEDS_MAX: 400,
    ErrorCategory.INVALID_TIME_WINDOW: 400,
    ErrorCategory.DUPLICATE_RUN_ID: 409,
    ErrorCategory.COOLDOWN_ACTIVE: 429,
    ErrorCategory.LEDGER_PAUSED: 503,
    ErrorCategory.INSUFFICIENT_FUNDS: 400,
    ErrorCategory.TRANSIENT_NETWORK: 504,
    ErrorCategory.INVALID_PLAYER: 400,
    ErrorCategory.INVALID_HEALTH_VALUE: 400,
    ErrorCategory.INVALID_RISK_EVENT: 400,
    ErrorCategory.UNKNOWN: 500,
}


REFILL_EVENT_CATEGORIES = frozenset(
    {
        ErrorCategory.INVALID_PLAYER,
        ErrorCategory.INVALID_HEALTH_VALUE,
        ErrorCategory.TRANSIENT_NETWORK,
        ErrorCategory.UNKNOWN,
    }
)


# Order matters: contract rule reverts are checked before transport noise,
# since an RPC error body can contain both.
_PATTERNS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.SCORE_EXCEEDS_MAX, ("score>max", "score > max", "score exceeds", "score too high")),
    (ErrorCategory.INVALID_TIME_WINDOW, ("bad window", "invalid window", "time window", "endedat", "startedat")),
    (ErrorCategory.DUPLICATE_RUN_ID, ("runid used", "run id used", "duplicate run")),
    (ErrorCategory.COOLDOWN_ACTIVE, ("cooldown",)),
    (ErrorCategory.LEDGER_PAUSED, ("paused", "enforcedpause")),
    (ErrorCategory.INSUFFICIENT_FUNDS, ("insufficient funds",)),
    (ErrorCategory.INVALID_PLAYER, ("bad player", "invalid player")),
    (ErrorCategory.INVALID_HEALTH_VALUE, ("bad health", "invalid health")),
    (ErrorCategory.INVALID_RISK_EVENT, ("bad risk", "invalid risk")),
    (
        ErrorCategory.TRANSIENT_NETWORK,
        (
            "timeout",
            "timed out",
            "econnreset",
            "econnrefused",
            "connection",
            "network error",
            "temporarily unavailable",
            "bad gateway",
            "service unavailable",
            "too many requests",
            "rate limit",
        ),
    ),
)

_MISSING_STATE_PATTERNS = (
    "account not found",
    "not found",
    "revert",
    "could not decode",
    "could not transact",
)

_TRANSIENT_TYPES = (asyncio.TimeoutError, TimeoutError, ConnectionError)


class FishtankError(Exception):
    """Base error carrying a taxonomy category and optional raw details."""

    def __init__(self, category: ErrorCategory, details: str | None = None) -> None:
        self.category = category
        self.details = details
        super().__init__(details or USER_MESSAGES[category])

    @property
    def message(self) -> str:
        return USER_MESSAGES[self.category]

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.category]

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "category": self.category.value, "details": self.details}


class PaymentRequired(FishtankError):
    def __init__(self, challenge: Any) -> None:
        super().__init__(ErrorCategory.PAYMENT_REQUIRED)
        self.challenge = challenge

    def to_body(self) -> dict[str, Any]:
        return {"payment": self.challenge.to_body()}


class InvalidPaymentProof(FishtankError):
    def __init__(self, details: str | None = None) -> None:
        super().__init__(ErrorCategory.INVALID_PAYMENT_PROOF, details)


class RunValidationError(FishtankError):
    """A run record failed local checks and was never sent to the ledger."""


class LedgerError(FishtankError):
    """A classified failure reported by, or on the way to, the ledger."""


def _raw_text(raw: str | BaseException) -> str:
    if isinstance(raw, BaseException):
        text = str(raw)
        return text or type(raw).__name__
    return raw


def classify_ledger_error(
    raw: str | BaseException,
    allowed: Iterable[ErrorCategory] | None = None,
) -> ErrorCategory:
    """Map a raw ledger error to exactly one category, defaulting to UNKNOWN."""
    if isinstance(raw, _TRANSIENT_TYPES):
        category = ErrorCategory.TRANSIENT_NETWORK
    else:
        text = _raw_text(raw).lower()
        category = ErrorCategory.UNKNOWN
        for candidate, needles in _PATTERNS:
            if any(needle in text for needle in needles):
                category = candidate
                break

    if allowed is not None and category not in set(allowed):
        return ErrorCategory.UNKNOWN
    return category


def is_missing_state(raw: str | BaseException) -> bool:
    """True when a read failed because the ledger has nothing for the key."""
    if isinstance(raw, _TRANSIENT_TYPES):
        return False
    text = _raw_text(raw).lower()
    return any(needle in text for needle in _MISSING_STATE_PATTERNS)


def to_ledger_error(
    raw: BaseException,
    allowed: Iterable[ErrorCategory] | None = None,
) -> LedgerError:
    if isinstance(raw, LedgerError):
        if allowed is not None and raw.category not in set(allowed):
            return LedgerError(ErrorCategory.UNKNOWN, raw.details)
        return raw
    return LedgerError(classify_ledger_error(raw, allowed), _raw_text(raw))
