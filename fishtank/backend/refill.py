"""402 challenge/response workflow for the health refill action."""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from .challenge import PaymentPolicy, PaymentProof
from .config import BackendSettings
from .errors import (
    ErrorCategory,
    FishtankError,
    InvalidPaymentProof,
    LedgerError,
    PaymentRequired,
    REFILL_EVENT_CATEGORIES,
    to_ledger_error,
)
from .ledger import LedgerGateway
from .models import Receipt, RefillGrant
from .security import is_address


class RefillWorkflow:
    """Stateless per request; a retry is a new request that carries a proof."""

    def __init__(
        self,
        policy: PaymentPolicy,
        ledger: LedgerGateway,
        settings: BackendSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self.ledger = ledger
        self.settings = settings
        self.clock = clock

    async def handle(self, proof: PaymentProof) -> RefillGrant:
        now = self.clock()
        if not proof.present:
            logger.info(f"Refill requested without payment proof (player={proof.player_address})")
            raise PaymentRequired(self.policy.issue(now))

        health = proof.presented_health
        if health is None or not 0 <= health <= self.settings.max_health:
            raise FishtankError(
                ErrorCategory.INVALID_HEALTH_VALUE,
                f"health must be between 0 and {self.settings.max_health}",
            )
        if proof.player_address is not None and not is_address(proof.player_address):
            raise FishtankError(ErrorCategory.INVALID_PLAYER, f"not an account address: {proof.player_address!r}")

        if not await self.policy.accepts(proof, now):
            logger.info(f"Refill proof rejected (player={proof.player_address})")
            raise InvalidPaymentProof("payment proof failed verification")

        increase = self.settings.refill_amount_hp
        new_health = min(health + increase, self.settings.max_health)
        logger.info(f"Health refilled: {health} -> {new_health} (player={proof.player_address})")
        return RefillGrant(
            new_health=new_health,
            health_increase=increase,
            previous_health=health,
            player_address=proof.player_address,
        )

    async def record_event(self, grant: RefillGrant) -> Receipt | None:
        """Write the refill to the ledger; failures are logged, never raised."""
        if not grant.player_address:
            return None
        try:
            receipt = await self.ledger.record_refill_event(grant.player_address, grant.new_health)
        except LedgerError as exc:
            error = to_ledger_error(exc, REFILL_EVENT_CATEGORIES)
            logger.warning(
                f"Refill event for {grant.player_address} not recorded "
                f"({error.category.value}): {error.details}"
            )
            return None
        logger.info(f"Refill event recorded for {grant.player_address}: tx={receipt.tx_ref}")
        return receipt
