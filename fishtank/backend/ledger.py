"""Ledger gateway interface and implementations.

The gateway is the only component that talks to the external ledger. Every
failure leaving it is a ``LedgerError`` with a category from the closed
taxonomy in ``errors``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import time
from typing import Any, Callable, Protocol

from loguru import logger

from .config import BackendSettings
from .errors import (
    ErrorCategory,
    LedgerError,
    REFILL_EVENT_CATEGORIES,
    is_missing_state,
    to_ledger_error,
)
from .models import LeaderboardEntry, PaymentReceipt, PlayerState, Receipt
from .runs import RunRecord
from .security import ZERO_ADDRESS, is_address, sha256_hex
from .state import rank_top_slots


TOP_SLOTS = 5
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
RISK_EVENT_CATEGORIES = frozenset(
    {
        ErrorCategory.INVALID_PLAYER,
        ErrorCategory.INVALID_RISK_EVENT,
        ErrorCategory.TRANSIENT_NETWORK,
        ErrorCategory.UNKNOWN,
    }
)


class ContractRevert(Exception):
    """Raw revert raised by the in-memory contract before classification."""


class LedgerGateway(Protocol):
    async def submit_run(self, record: RunRecord) -> Receipt:
        """Send a finished run for acceptance and return the write receipt."""

    async def record_refill_event(self, player: str, new_health: int) -> Receipt:
        """Record that a player's health was refilled."""

    async def record_risk_event(self, player: str, risk_score: int, event_type: str) -> Receipt:
        """Record a scored risk event for a player."""

    async def read_player_state(self, player: str) -> PlayerState:
        """Return player state, or the zero state when the ledger has none."""

    async def read_top(self, n: int) -> list[LeaderboardEntry]:
        """Return up to n ranked entries with empty slots removed."""

    async def read_difficulty(self) -> int:
        """Return the current game difficulty."""

    async def lookup_payment(self, tx_ref: str) -> PaymentReceipt | None:
        """Return the token transfer made by tx_ref, if any."""


@dataclass
class InMemoryLedger:
    """Process-local ledger enforcing the same rules as the game contract."""

    score_max: int = 1_000_000
    max_session_seconds: int = 3600
    cooldown_seconds: int = 0
    difficulty: int = 4
    paused: bool = False
    clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        self._players: dict[str, tuple[str, PlayerState]] = {}
        self._used_run_ids: set[str] = set()
        self._last_submission: dict[str, float] = {}
        self._payments: dict[str, PaymentReceipt] = {}
        self._block = 0
        self.refill_events: list[dict[str, Any]] = []
        self.risk_events: list[dict[str, Any]] = []

    async def submit_run(self, record: RunRecord) -> Receipt:
        try:
            return self._apply_run(record)
        except ContractRevert as exc:
            raise to_ledger_error(exc) from exc

    async def record_refill_event(self, player: str, new_health: int) -> Receipt:
        try:
            if not is_address(player):
                raise ContractRevert("execution reverted: bad player")
            if new_health < 0:
                raise ContractRevert("execution reverted: bad health")
            self.refill_events.append({"player": player, "newHealth": new_health})
            return self._next_receipt(f"refill:{player}:{new_health}")
        except ContractRevert as exc:
            raise to_ledger_error(exc, REFILL_EVENT_CATEGORIES) from exc

    async def record_risk_event(self, player: str, risk_score: int, event_type: str) -> Receipt:
        try:
            if not is_address(player):
                raise ContractRevert("execution reverted: bad player")
            if risk_score < 0 or not event_type:
                raise ContractRevert("execution reverted: bad risk event")
            self.risk_events.append({"player": player, "riskScore": risk_score, "eventType": event_type})
            return self._next_receipt(f"risk:{player}:{risk_score}:{event_type}")
        except ContractRevert as exc:
            raise to_ledger_error(exc, RISK_EVENT_CATEGORIES) from exc

    async def read_player_state(self, player: str) -> PlayerState:
        stored = self._players.get(player.lower())
        if stored is None:
            return PlayerState.zero()
        return stored[1]

    async def read_top(self, n: int) -> list[LeaderboardEntry]:
        ranked = sorted(self._players.values(), key=lambda item: -item[1].best_score)[:TOP_SLOTS]
        addresses = [address for address, _ in ranked]
        scores = [state.best_score for _, state in ranked]
        padding = TOP_SLOTS - len(addresses)
        addresses.extend([ZERO_ADDRESS] * padding)
        scores.extend([0] * padding)
        return rank_top_slots(addresses, scores)[:n]

    async def read_difficulty(self) -> int:
        return self.difficulty

    async def lookup_payment(self, tx_ref: str) -> PaymentReceipt | None:
        return self._payments.get(tx_ref.lower())

    def add_payment(self, receipt: PaymentReceipt) -> None:
        self._payments[receipt.tx_ref.lower()] = receipt

    def _apply_run(self, record: RunRecord) -> Receipt:
        if self.paused:
            raise ContractRevert("execution reverted: paused")
        if not is_address(record.player):
            raise ContractRevert("execution reverted: bad player")
        if record.score > self.score_max:
            raise ContractRevert("execution reverted: score>max")
        if record.ended_at <= record.started_at or record.duration > self.max_session_seconds:
            raise ContractRevert("execution reverted: bad window")
        if record.run_id in self._used_run_ids:
            raise ContractRevert("execution reverted: runId used")

        key = record.player.lower()
        now = self.clock()
        last = self._last_submission.get(key)
        if last is not None and now - last < self.cooldown_seconds:
            raise ContractRevert("execution reverted: cooldown")

        _, previous = self._players.get(key, (record.player, PlayerState.zero()))
        self._players[key] = (
            record.player,
            PlayerState(
                best_score=max(previous.best_score, record.score),
                last_score=record.score,
                runs=previous.runs + 1,
                last_played_at=record.ended_at,
                last_run_id=record.run_id,
            ),
        )
        self._used_run_ids.add(record.run_id)
        self._last_submission[key] = now
        return self._next_receipt(f"run:{record.run_id}")

    def _next_receipt(self, payload: str) -> Receipt:
        self._block += 1
        return Receipt(tx_ref="0x" + sha256_hex(f"{self._block}:{payload}"), block_ref=self._block)


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[dict[str, Any]], mutability: str) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "outputs": outputs,
        "stateMutability": mutability,
    }


FISHTANK_ABI: list[dict[str, Any]] = [
    _fn(
        "submitScoreFor",
        [("player", "address"), ("score", "uint64"), ("runId", "bytes32"), ("startedAt", "uint64"), ("endedAt", "uint64")],
        [],
        "nonpayable",
    ),
    _fn("recordHealth", [("player", "address"), ("newHealth", "uint8")], [], "nonpayable"),
    _fn("recordRisk", [("player", "address"), ("riskScore", "uint16"), ("eventType", "string")], [], "nonpayable"),
    _fn(
        "getPlayer",
        [("player", "address")],
        [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "bestScore", "type": "uint64"},
                    {"name": "lastScore", "type": "uint64"},
                    {"name": "runs", "type": "uint32"},
                    {"name": "lastPlayedAt", "type": "uint64"},
                    {"name": "lastRunId", "type": "bytes32"},
                ],
            }
        ],
        "view",
    ),
    _fn("getTop5", [], [{"name": "", "type": "address[5]"}, {"name": "", "type": "uint64[5]"}], "view"),
    _fn("difficulty", [], [{"name": "", "type": "uint8"}], "view"),
]


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def _checksum(address: str) -> str:
    from web3 import Web3

    return Web3.to_checksum_address(address)


class Web3Ledger:
    """Ledger gateway backed by the game contract on an EVM chain.

    Writes are signed by an operator key and awaited to a receipt. The web3
    client and contract handle are created on first use, or can be injected.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        chain_id: int,
        signer_key: str | None = None,
        payment_token_address: str | None = None,
        payment_token_decimals: int = 6,
        payment_currency: str = "USDC",
        receipt_timeout: float = 120.0,
        web3: Any = None,
        contract: Any = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.chain_id = chain_id
        self.signer_key = signer_key
        self.payment_token_address = payment_token_address
        self.payment_token_decimals = payment_token_decimals
        self.payment_currency = payment_currency
        self.receipt_timeout = receipt_timeout
        self._web3 = web3
        self._contract = contract

    def _client(self) -> Any:
        if self._web3 is None:
            from web3 import AsyncHTTPProvider, AsyncWeb3

            self._web3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        return self._web3

    def _handle(self) -> Any:
        if self._contract is None:
            self._contract = self._client().eth.contract(
                address=_checksum(self.contract_address),
                abi=FISHTANK_ABI,
            )
        return self._contract

    async def _transact(self, call: Any) -> Receipt:
        if not self.signer_key:
            raise LedgerError(ErrorCategory.UNKNOWN, "no signer key configured for ledger writes")
        w3 = self._client()
        account = w3.eth.account.from_key(self.signer_key)
        nonce = await w3.eth.get_transaction_count(account.address)
        tx = await call.build_transaction({"from": account.address, "nonce": nonce, "chainId": self.chain_id})
        signed = account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug(f"Ledger transaction sent: {_hex(tx_hash)}")
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if int(receipt["status"]) != 1:
            raise ContractRevert(f"execution reverted: transaction {_hex(tx_hash)} failed")
        return Receipt(tx_ref=_hex(receipt["transactionHash"]), block_ref=int(receipt["blockNumber"]))

    async def submit_run(self, record: RunRecord) -> Receipt:
        try:
            call = self._handle().functions.submitScoreFor(
                _checksum(record.player),
                record.score,
                bytes.fromhex(record.run_id[2:]),
                record.started_at,
                record.ended_at,
            )
            return await self._transact(call)
        except Exception as exc:
            raise to_ledger_error(exc) from exc

    async def record_refill_event(self, player: str, new_health: int) -> Receipt:
        try:
            if not is_address(player):
                raise ContractRevert("bad player")
            call = self._handle().functions.recordHealth(_checksum(player), new_health)
            return await self._transact(call)
        except Exception as exc:
            raise to_ledger_error(exc, REFILL_EVENT_CATEGORIES) from exc

    async def record_risk_event(self, player: str, risk_score: int, event_type: str) -> Receipt:
        try:
            if not is_address(player):
                raise ContractRevert("bad player")
            call = self._handle().functions.recordRisk(_checksum(player), risk_score, event_type)
            return await self._transact(call)
        except Exception as exc:
            raise to_ledger_error(exc, RISK_EVENT_CATEGORIES) from exc

    async def read_player_state(self, player: str) -> PlayerState:
        try:
            raw = await self._handle().functions.getPlayer(_checksum(player)).call()
        except Exception as exc:
            if is_missing_state(exc):
                logger.debug(f"No ledger state for {player}: {exc}")
                return PlayerState.zero()
            raise to_ledger_error(exc) from exc
        best_score, last_score, runs, last_played_at, last_run_id = raw
        return PlayerState(
            best_score=int(best_score),
            last_score=int(last_score),
            runs=int(runs),
            last_played_at=int(last_played_at),
            last_run_id=_hex(last_run_id),
        )

    async def read_top(self, n: int) -> list[LeaderboardEntry]:
        try:
            addresses, scores = await self._handle().functions.getTop5().call()
        except Exception as exc:
            raise to_ledger_error(exc) from exc
        return rank_top_slots(addresses, scores)[:n]

    async def read_difficulty(self) -> int:
        try:
            return int(await self._handle().functions.difficulty().call())
        except Exception as exc:
            raise to_ledger_error(exc) from exc

    async def lookup_payment(self, tx_ref: str) -> PaymentReceipt | None:
        if not self.payment_token_address:
            return None
        try:
            receipt = await self._client().eth.get_transaction_receipt(tx_ref)
        except Exception as exc:
            if is_missing_state(exc):
                return None
            raise to_ledger_error(exc) from exc
        if int(receipt["status"]) != 1:
            return None

        topic = bytes.fromhex(TRANSFER_TOPIC[2:])
        for log in receipt["logs"]:
            if str(log["address"]).lower() != self.payment_token_address.lower():
                continue
            topics = [bytes(item) for item in log["topics"]]
            if len(topics) < 3 or topics[0] != topic:
                continue
            amount = int.from_bytes(bytes(log["data"]), "big")
            return PaymentReceipt(
                tx_ref=tx_ref,
                receiver="0x" + topics[2][-20:].hex(),
                amount=Decimal(amount).scaleb(-self.payment_token_decimals),
                currency=self.payment_currency,
            )
        return None


def create_ledger(settings: BackendSettings) -> LedgerGateway:
    if settings.rpc_url:
        return Web3Ledger(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            chain_id=settings.chain_id,
            signer_key=settings.signer_key,
            payment_token_address=settings.payment_token_address,
            payment_token_decimals=settings.payment_token_decimals,
            payment_currency=settings.refill_currency,
        )
    return InMemoryLedger(score_max=settings.score_max, max_session_seconds=settings.max_session_seconds)
