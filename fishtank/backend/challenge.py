"""Pay-to-unlock challenges for the health refill action.

A challenge describes what a refill costs. The policy issues challenges from
static configuration and decides whether a presented proof satisfies one.
Which proofs count is delegated to a ``PaymentVerifier``:

* ``DemoVerifier`` checks proof shape only (sentinel token or a 0x hex
  reference). It is not suitable for production use.
* ``OnChainVerifier`` looks the transfer up on the ledger and checks
  receiver, amount and currency, and that the hash was not already spent.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Protocol

from loguru import logger

from .config import BackendSettings
from .models import PaymentReceipt
from .security import is_hex_reference, sign_challenge, verify_challenge


@dataclass(frozen=True)
class PaymentChallenge:
    price: str
    currency: str
    network: str
    receiver: str
    memo: str
    challenge_id: str | None = None
    expires_at: int | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "price": self.price,
            "currency": self.currency,
            "network": self.network,
            "receiver": self.receiver,
            "memo": self.memo,
        }
        if self.challenge_id is not None:
            body["challengeId"] = self.challenge_id
            body["expiresAt"] = self.expires_at
        return body


@dataclass(frozen=True)
class PaymentProof:
    token: str | None
    presented_health: int | None
    player_address: str | None = None
    challenge_id: str | None = None

    @property
    def present(self) -> bool:
        return bool(self.token)


class PaymentVerifier(Protocol):
    async def verify(self, proof: PaymentProof, challenge: PaymentChallenge) -> bool:
        """Return True when the proof pays for the challenge."""


@dataclass
class DemoVerifier:
    """Syntactic-only acceptance. Never use where refills have real value."""

    sentinel: str = "demo-ok"

    async def verify(self, proof: PaymentProof, challenge: PaymentChallenge) -> bool:
        token = proof.token or ""
        return token == self.sentinel or is_hex_reference(token)


class OnChainVerifier:
    def __init__(self, lookup: Callable[[str], Awaitable[PaymentReceipt | None]]) -> None:
        self._lookup = lookup
        self._spent: set[str] = set()

    async def verify(self, proof: PaymentProof, challenge: PaymentChallenge) -> bool:
        token = proof.token or ""
        if not is_hex_reference(token):
            return False
        tx_ref = token.lower()
        if tx_ref in self._spent:
            logger.warning(f"Payment {tx_ref} was already used for a refill")
            return False

        # Claimed before the lookup so a concurrent request cannot reuse it.
        self._spent.add(tx_ref)
        accepted = False
        try:
            accepted = await self._accepts(token, challenge)
        finally:
            if not accepted:
                self._spent.discard(tx_ref)
        return accepted

    async def _accepts(self, token: str, challenge: PaymentChallenge) -> bool:
        receipt = await self._lookup(token)
        if receipt is None:
            return False
        if receipt.receiver.lower() != challenge.receiver.lower():
            return False
        if receipt.currency.upper() != challenge.currency.upper():
            return False
        return receipt.amount >= Decimal(challenge.price)


class PaymentPolicy:
    def __init__(self, settings: BackendSettings, verifier: PaymentVerifier) -> None:
        self.settings = settings
        self.verifier = verifier

    def issue(self, now: float) -> PaymentChallenge:
        challenge_id: str | None = None
        expires_at: int | None = None
        if self.settings.bind_challenges:
            expires_at = int(now) + self.settings.challenge_ttl_seconds
            challenge_id = sign_challenge(expires_at, self.settings.challenge_secret)
        return PaymentChallenge(
            price=self.settings.refill_price,
            currency=self.settings.refill_currency,
            network=self.settings.refill_network,
            receiver=self.settings.refill_receiver,
            memo=f"Refill +{self.settings.refill_amount_hp} HP",
            challenge_id=challenge_id,
            expires_at=expires_at,
        )

    async def accepts(self, proof: PaymentProof, now: float) -> bool:
        if not proof.present:
            return False
        if self.settings.bind_challenges and not verify_challenge(
            proof.challenge_id, self.settings.challenge_secret, now
        ):
            logger.info("Refill proof does not echo a live challenge id")
            return False
        return await self.verifier.verify(proof, self.issue(now))


def create_verifier(settings: BackendSettings, ledger: Any) -> PaymentVerifier:
    if settings.proof_mode == "onchain":
        return OnChainVerifier(lookup=ledger.lookup_payment)
    return DemoVerifier(sentinel=settings.demo_proof_token)
