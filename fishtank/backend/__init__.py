"""Backend package for the Fishtank paid-refill and leaderboard service."""

from .challenge import DemoVerifier, OnChainVerifier, PaymentChallenge, PaymentPolicy, PaymentProof
from .config import BackendSettings, load_settings
from .errors import ErrorCategory, FishtankError, LedgerError, classify_ledger_error
from .ledger import InMemoryLedger, LedgerGateway, Web3Ledger, create_ledger
from .refill import RefillWorkflow
from .runs import RunRecord, build_run_record, validate_run
from .submission import RetryConfig, ScoreSubmissionWorkflow

__all__ = [
    "BackendSettings",
    "build_run_record",
    "classify_ledger_error",
    "create_ledger",
    "DemoVerifier",
    "ErrorCategory",
    "FishtankError",
    "InMemoryLedger",
    "LedgerError",
    "LedgerGateway",
    "load_settings",
    "OnChainVerifier",
    "PaymentChallenge",
    "PaymentPolicy",
    "PaymentProof",
    "RefillWorkflow",
    "RetryConfig",
    "RunRecord",
    "ScoreSubmissionWorkflow",
    "validate_run",
    "Web3Ledger",
]
