"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation


DEFAULT_RECEIVER = "0x742a4a9F23E8C14e8C20320E6e0B3E9e2DF5A5F8"
DEFAULT_CONTRACT = "0x467397d1d298c1a4ca9bfe87565ef04486c25c0f"
DEFAULT_PAYMENT_TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


@dataclass(frozen=True)
class BackendSettings:
    host: str = "127.0.0.1"
    port: int = 4000
    log_level: str = "INFO"
    refill_price: str = "0.01"
    refill_currency: str = "USDC"
    refill_network: str = "base"
    refill_receiver: str = DEFAULT_RECEIVER
    refill_amount_hp: int = 3
    max_health: int = 9
    demo_proof_token: str = "demo-ok"
    proof_mode: str = "demo"
    challenge_secret: str = "dev-secret"
    challenge_ttl_seconds: int = 300
    bind_challenges: bool = False
    score_max: int = 1_000_000
    max_session_seconds: int = 3600
    session_assumption_seconds: int = 300
    submit_attempts: int = 3
    submit_initial_delay: float = 0.5
    submit_timeout_seconds: float = 60.0
    rpc_url: str | None = None
    contract_address: str = DEFAULT_CONTRACT
    chain_id: int = 129399
    signer_key: str | None = None
    payment_token_address: str = DEFAULT_PAYMENT_TOKEN
    payment_token_decimals: int = 6
    player_refresh_seconds: float = 15.0
    onramp_app_id: str = "fishtank-liquidity-hunter"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_price(name: str, default: str) -> str:
    raw = os.getenv(name, default)
    try:
        price = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal string, got {raw!r}") from exc
    if price <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return raw


def load_settings() -> BackendSettings:
    proof_mode = os.getenv("FISHTANK_PROOF_MODE", "demo").lower()
    if proof_mode not in {"demo", "onchain"}:
        raise ValueError(f"FISHTANK_PROOF_MODE must be 'demo' or 'onchain', got {proof_mode!r}")
    return BackendSettings(
        host=os.getenv("FISHTANK_HOST", "127.0.0.1"),
        port=int(os.getenv("FISHTANK_PORT", "4000")),
        log_level=os.getenv("FISHTANK_LOG_LEVEL", "INFO").upper(),
        refill_price=_env_price("FISHTANK_REFILL_PRICE", "0.01"),
        refill_currency=os.getenv("FISHTANK_REFILL_CURRENCY", "USDC"),
        refill_network=os.getenv("FISHTANK_X402_NETWORK", "base"),
        refill_receiver=os.getenv("FISHTANK_REFILL_RECEIVER", DEFAULT_RECEIVER),
        refill_amount_hp=int(os.getenv("FISHTANK_REFILL_AMOUNT_HP", "3")),
        max_health=int(os.getenv("FISHTANK_MAX_HEALTH", "9")),
        demo_proof_token=os.getenv("FISHTANK_DEMO_PROOF_TOKEN", "demo-ok"),
        proof_mode=proof_mode,
        challenge_secret=os.getenv("FISHTANK_CHALLENGE_SECRET", "dev-secret"),
        challenge_ttl_seconds=int(os.getenv("FISHTANK_CHALLENGE_TTL_SECONDS", "300")),
        bind_challenges=_env_bool("FISHTANK_BIND_CHALLENGES", False),
        score_max=int(os.getenv("FISHTANK_SCORE_MAX", "1000000")),
        max_session_seconds=int(os.getenv("FISHTANK_MAX_SESSION_SECONDS", "3600")),
        session_assumption_seconds=int(os.getenv("FISHTANK_SESSION_SECONDS", "300")),
        submit_attempts=int(os.getenv("FISHTANK_SUBMIT_ATTEMPTS", "3")),
        submit_initial_delay=float(os.getenv("FISHTANK_SUBMIT_INITIAL_DELAY", "0.5")),
        submit_timeout_seconds=float(os.getenv("FISHTANK_SUBMIT_TIMEOUT_SECONDS", "60")),
        rpc_url=os.getenv("FISHTANK_RPC_URL") or None,
        contract_address=os.getenv("FISHTANK_CONTRACT_ADDRESS", DEFAULT_CONTRACT),
        chain_id=int(os.getenv("FISHTANK_CHAIN_ID", "129399")),
        signer_key=os.getenv("FISHTANK_SIGNER_KEY") or None,
        payment_token_address=os.getenv("FISHTANK_PAYMENT_TOKEN_ADDRESS", DEFAULT_PAYMENT_TOKEN),
        payment_token_decimals=int(os.getenv("FISHTANK_PAYMENT_TOKEN_DECIMALS", "6")),
        player_refresh_seconds=float(os.getenv("FISHTANK_PLAYER_REFRESH_SECONDS", "15")),
        onramp_app_id=os.getenv("FISHTANK_ONRAMP_APP_ID", "fishtank-liquidity-hunter"),
    )
