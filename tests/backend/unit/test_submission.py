import asyncio

import pytest

from fishtank.backend.config import BackendSettings
from fishtank.backend.errors import ErrorCategory, LedgerError, RunValidationError
from fishtank.backend.ledger import InMemoryLedger
from fishtank.backend.submission import RetryConfig, ScoreSubmissionWorkflow

PLAYER = "0x742d35Cc6651Bc8e3aF8b4f2cFE41d8b7B7e9B3c"
NOW = 1_700_000_000.0


class ScriptedLedger(InMemoryLedger):
    """In-memory ledger that raises scripted errors before accepting writes."""

    def __init__(self, failures: list[Exception], land_before_failing: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        self.failures = list(failures)
        self.land_before_failing = land_before_failing
        self.submit_calls = 0

    async def submit_run(self, record):
        self.submit_calls += 1
        if self.failures:
            error = self.failures.pop(0)
            if self.land_before_failing:
                await super().submit_run(record)
            raise error
        return await super().submit_run(record)


class CountingLedger(InMemoryLedger):
    def __post_init__(self) -> None:
        super().__post_init__()
        self.submit_calls = 0

    async def submit_run(self, record):
        self.submit_calls += 1
        return await super().submit_run(record)


def _workflow(ledger, attempts: int = 3, **overrides):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    workflow = ScoreSubmissionWorkflow(
        ledger=ledger,
        settings=BackendSettings(**overrides),
        retry=RetryConfig(max_attempts=attempts, initial_delay=0.5, max_delay=8.0),
        clock=lambda: NOW,
        sleep=fake_sleep,
    )
    return workflow, delays


def _transient() -> LedgerError:
    return LedgerError(ErrorCategory.TRANSIENT_NETWORK, "ECONNRESET")


def test_submit_success_returns_receipt_and_run_id() -> None:
    ledger = InMemoryLedger()
    workflow, _ = _workflow(ledger)

    result = asyncio.run(workflow.submit(PLAYER, 420))

    assert result.tx_ref.startswith("0x")
    assert result.block_ref == 1
    assert result.score == 420
    assert result.reconciled is False
    state = asyncio.run(ledger.read_player_state(PLAYER))
    assert state.last_run_id == result.run_id


def test_score_over_local_max_never_reaches_ledger() -> None:
    ledger = CountingLedger()
    workflow, _ = _workflow(ledger, score_max=100)

    with pytest.raises(RunValidationError) as excinfo:
        asyncio.run(workflow.submit(PLAYER, 101))

    assert excinfo.value.category is ErrorCategory.SCORE_EXCEEDS_MAX
    assert ledger.submit_calls == 0


def test_ledger_side_score_max_is_still_score_exceeds_max() -> None:
    ledger = InMemoryLedger(score_max=50)
    workflow, _ = _workflow(ledger, score_max=1_000)

    with pytest.raises(LedgerError) as excinfo:
        asyncio.run(workflow.submit(PLAYER, 51))

    assert excinfo.value.category is ErrorCategory.SCORE_EXCEEDS_MAX


def test_transient_failures_are_retried_with_backoff() -> None:
    ledger = ScriptedLedger([_transient(), _transient()])
    workflow, delays = _workflow(ledger, attempts=3)

    result = asyncio.run(workflow.submit(PLAYER, 10))

    assert ledger.submit_calls == 3
    assert delays == [0.5, 1.0]
    assert result.score == 10


def test_transient_failures_surface_after_retries_exhausted() -> None:
    ledger = ScriptedLedger([_transient(), _transient(), _transient()])
    workflow, delays = _workflow(ledger, attempts=3)

    with pytest.raises(LedgerError) as excinfo:
        asyncio.run(workflow.submit(PLAYER, 10))

    assert excinfo.value.category is ErrorCategory.TRANSIENT_NETWORK
    assert ledger.submit_calls == 3
    assert len(delays) == 2


@pytest.mark.parametrize(
    "category",
    [
        ErrorCategory.DUPLICATE_RUN_ID,
        ErrorCategory.COOLDOWN_ACTIVE,
        ErrorCategory.LEDGER_PAUSED,
        ErrorCategory.INSUFFICIENT_FUNDS,
        ErrorCategory.UNKNOWN,
    ],
)
def test_non_transient_failures_are_terminal(category: ErrorCategory) -> None:
    ledger = ScriptedLedger([LedgerError(category, "raw")])
    workflow, delays = _workflow(ledger)

    with pytest.raises(LedgerError) as excinfo:
        asyncio.run(workflow.submit(PLAYER, 10))

    assert excinfo.value.category is category
    assert ledger.submit_calls == 1
    assert delays == []


def test_duplicate_after_unconfirmed_write_reconciles_from_player_state() -> None:
    ledger = ScriptedLedger([_transient()], land_before_failing=True)
    workflow, _ = _workflow(ledger)

    result = asyncio.run(workflow.submit(PLAYER, 10))

    assert ledger.submit_calls == 2
    assert result.reconciled is True
    assert result.tx_ref is None
    assert result.block_ref is None


def test_local_timeout_is_retried_as_transient() -> None:
    class SlowOnceLedger(InMemoryLedger):
        slow = True

        async def submit_run(self, record):
            if self.slow:
                self.slow = False
                await asyncio.sleep(1)
            return await super().submit_run(record)

    ledger = SlowOnceLedger()
    workflow, delays = _workflow(ledger, submit_timeout_seconds=0.01)

    result = asyncio.run(workflow.submit(PLAYER, 10))

    assert result.reconciled is False
    assert delays == [0.5]


def test_retry_config_caps_delay() -> None:
    retry = RetryConfig(initial_delay=1.0, max_delay=3.0, exponential_base=2.0)

    assert [retry.delay_for(n) for n in range(4)] == [1.0, 2.0, 3.0, 3.0]
