"""Score submission: build a run, check it locally, write it to the ledger."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import time
from typing import Awaitable, Callable

from loguru import logger

from .config import BackendSettings
from .errors import ErrorCategory, LedgerError
from .ledger import LedgerGateway
from .models import Receipt, SubmissionResult
from .runs import RunRecord, build_run_record, validate_run


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff for transient ledger failures."""

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * self.exponential_base ** attempt, self.max_delay)


class ScoreSubmissionWorkflow:
    def __init__(
        self,
        ledger: LedgerGateway,
        settings: BackendSettings,
        retry: RetryConfig | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.settings = settings
        self.retry = retry or RetryConfig(
            max_attempts=settings.submit_attempts,
            initial_delay=settings.submit_initial_delay,
        )
        self.clock = clock
        self.sleep = sleep

    def build(self, player: str, score: int, now: float | None = None) -> RunRecord:
        record = build_run_record(
            player=player,
            score=score,
            now=self.clock() if now is None else now,
            session_seconds=self.settings.session_assumption_seconds,
        )
        validate_run(record, self.settings.score_max, self.settings.max_session_seconds)
        return record

    async def submit(self, player: str, score: int, now: float | None = None) -> SubmissionResult:
        record = self.build(player, score, now)
        logger.info(f"Submitting score {record.score} for {record.player} (run {record.run_id})")
        return await self.submit_record(record)

    async def submit_record(self, record: RunRecord) -> SubmissionResult:
        """Write a validated record, retrying only transient failures.

        The same record (and run id) is reused across retries. A transient
        failure, a local timeout included, leaves the write outcome unknown;
        if a later attempt is then rejected as a duplicate, player state
        decides whether the earlier write landed.
        """
        outcome_unknown = False
        last_error: LedgerError | None = None

        for attempt in range(self.retry.max_attempts):
            try:
                receipt = await self._send(record)
            except LedgerError as exc:
                if exc.category is ErrorCategory.DUPLICATE_RUN_ID and outcome_unknown:
                    reconciled = await self._reconcile(record)
                    if reconciled is not None:
                        return reconciled
                if exc.category is not ErrorCategory.TRANSIENT_NETWORK:
                    logger.warning(f"Score submission for run {record.run_id} rejected ({exc.category.value}): {exc.details}")
                    raise
                last_error = exc
                outcome_unknown = True
                if attempt + 1 < self.retry.max_attempts:
                    delay = self.retry.delay_for(attempt)
                    logger.info(
                        f"Transient ledger failure on attempt {attempt + 1}/{self.retry.max_attempts} "
                        f"for run {record.run_id}, retrying in {delay:.2f}s"
                    )
                    await self.sleep(delay)
                continue

            logger.info(f"Score accepted: run {record.run_id} tx={receipt.tx_ref} block={receipt.block_ref}")
            return SubmissionResult(
                tx_ref=receipt.tx_ref,
                block_ref=receipt.block_ref,
                run_id=record.run_id,
                score=record.score,
            )

        logger.error(f"Score submission for run {record.run_id} failed after {self.retry.max_attempts} attempts")
        raise last_error or LedgerError(ErrorCategory.TRANSIENT_NETWORK, "no submission attempts configured")

    async def _send(self, record: RunRecord) -> Receipt:
        try:
            return await asyncio.wait_for(
                self.ledger.submit_run(record),
                timeout=self.settings.submit_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise LedgerError(
                ErrorCategory.TRANSIENT_NETWORK,
                f"submission timed out locally after {self.settings.submit_timeout_seconds}s",
            ) from exc

    async def _reconcile(self, record: RunRecord) -> SubmissionResult | None:
        state = await self.ledger.read_player_state(record.player)
        if state.last_run_id.lower() != record.run_id.lower():
            return None
        logger.info(f"Run {record.run_id} found on ledger after an unconfirmed attempt")
        return SubmissionResult(
            tx_ref=None,
            block_ref=None,
            run_id=record.run_id,
            score=record.score,
            reconciled=True,
        )
