import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from fishtank.backend.challenge import (
    DemoVerifier,
    OnChainVerifier,
    PaymentPolicy,
    PaymentProof,
    create_verifier,
)
from fishtank.backend.config import BackendSettings
from fishtank.backend.ledger import InMemoryLedger
from fishtank.backend.models import PaymentReceipt

RECEIVER = "0x742a4a9F23E8C14e8C20320E6e0B3E9e2DF5A5F8"
TX = "0x" + "ab" * 32


def _proof(token: str | None, challenge_id: str | None = None) -> PaymentProof:
    return PaymentProof(token=token, presented_health=4, challenge_id=challenge_id)


def test_issue_uses_configured_values_only() -> None:
    settings = BackendSettings(refill_price="0.05", refill_receiver=RECEIVER, refill_amount_hp=2)
    policy = PaymentPolicy(settings, DemoVerifier())

    challenge = policy.issue(now=1_000)

    assert challenge.to_body() == {
        "price": "0.05",
        "currency": "USDC",
        "network": "base",
        "receiver": RECEIVER,
        "memo": "Refill +2 HP",
    }
    assert challenge == policy.issue(now=1_000)


def test_demo_verifier_accepts_sentinel_and_hex_reference() -> None:
    policy = PaymentPolicy(BackendSettings(), DemoVerifier(sentinel="demo-ok"))

    assert asyncio.run(policy.accepts(_proof("demo-ok"), now=0)) is True
    assert asyncio.run(policy.accepts(_proof(TX), now=0)) is True


def test_demo_verifier_rejects_other_tokens() -> None:
    policy = PaymentPolicy(BackendSettings(), DemoVerifier(sentinel="demo-ok"))

    for token in ("demo-OK", "paid", "0x", "0xnothex", "", None):
        assert asyncio.run(policy.accepts(_proof(token), now=0)) is False


def test_bound_challenge_must_be_echoed_and_live() -> None:
    settings = BackendSettings(bind_challenges=True, challenge_ttl_seconds=60, challenge_secret="k")
    policy = PaymentPolicy(settings, DemoVerifier())
    challenge = policy.issue(now=1_000)

    assert challenge.challenge_id is not None
    assert challenge.to_body()["expiresAt"] == 1_060
    assert asyncio.run(policy.accepts(_proof("demo-ok", challenge.challenge_id), now=1_030)) is True
    assert asyncio.run(policy.accepts(_proof("demo-ok", challenge.challenge_id), now=1_061)) is False
    assert asyncio.run(policy.accepts(_proof("demo-ok"), now=1_030)) is False


def test_onchain_verifier_checks_receipt_and_spends_once() -> None:
    ledger = InMemoryLedger()
    ledger.add_payment(PaymentReceipt(tx_ref=TX, receiver=RECEIVER.lower(), amount=Decimal("0.01"), currency="USDC"))
    policy = PaymentPolicy(BackendSettings(refill_receiver=RECEIVER), OnChainVerifier(ledger.lookup_payment))

    assert asyncio.run(policy.accepts(_proof(TX), now=0)) is True
    assert asyncio.run(policy.accepts(_proof(TX), now=0)) is False


def test_onchain_verifier_rejects_wrong_receiver_amount_or_unknown_tx() -> None:
    ledger = InMemoryLedger()
    short_tx = "0x" + "01" * 32
    elsewhere_tx = "0x" + "02" * 32
    ledger.add_payment(PaymentReceipt(tx_ref=short_tx, receiver=RECEIVER, amount=Decimal("0.001"), currency="USDC"))
    ledger.add_payment(PaymentReceipt(tx_ref=elsewhere_tx, receiver="0x" + "11" * 20, amount=Decimal("1"), currency="USDC"))
    policy = PaymentPolicy(BackendSettings(refill_receiver=RECEIVER), OnChainVerifier(ledger.lookup_payment))

    assert asyncio.run(policy.accepts(_proof(short_tx), now=0)) is False
    assert asyncio.run(policy.accepts(_proof(elsewhere_tx), now=0)) is False
    assert asyncio.run(policy.accepts(_proof("0x" + "03" * 32), now=0)) is False
    assert asyncio.run(policy.accepts(_proof("demo-ok"), now=0)) is False


def test_create_verifier_follows_proof_mode() -> None:
    ledger = InMemoryLedger()

    assert isinstance(create_verifier(BackendSettings(), ledger), DemoVerifier)
    assert isinstance(create_verifier(replace(BackendSettings(), proof_mode="onchain"), ledger), OnChainVerifier)


def test_onchain_verifier_accepts_one_of_two_concurrent_uses_of_a_payment() -> None:
    receipt = PaymentReceipt(tx_ref=TX, receiver=RECEIVER, amount=Decimal("0.01"), currency="USDC")

    async def slow_lookup(tx_ref: str) -> PaymentReceipt:
        await asyncio.sleep(0.01)
        return receipt

    policy = PaymentPolicy(BackendSettings(refill_receiver=RECEIVER), OnChainVerifier(slow_lookup))

    async def race() -> list[bool]:
        return list(await asyncio.gather(policy.accepts(_proof(TX), now=0), policy.accepts(_proof(TX), now=0)))

    assert sorted(asyncio.run(race())) == [False, True]


def test_onchain_verifier_releases_payment_when_lookup_fails() -> None:
    receipt = PaymentReceipt(tx_ref=TX, receiver=RECEIVER, amount=Decimal("0.01"), currency="USDC")
    calls: list[str] = []

    async def flaky_lookup(tx_ref: str) -> PaymentReceipt:
        calls.append(tx_ref)
        if len(calls) == 1:
            raise ConnectionError("rpc unavailable")
        return receipt

    verifier = OnChainVerifier(flaky_lookup)
    policy = PaymentPolicy(BackendSettings(refill_receiver=RECEIVER), verifier)

    with pytest.raises(ConnectionError):
        asyncio.run(policy.accepts(_proof(TX), now=0))

    assert asyncio.run(policy.accepts(_proof(TX), now=0)) is True
