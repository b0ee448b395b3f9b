"""FastAPI endpoints for paid refills, score submission and ledger reads."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
import json
import time
from typing import Any, Callable

from fastapi import BackgroundTasks, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .challenge import PaymentPolicy, PaymentProof, create_verifier
from .config import BackendSettings, load_settings
from .errors import ErrorCategory, FishtankError, LedgerError
from .ledger import TOP_SLOTS, LedgerGateway, create_ledger
from .onramp import build_onramp_url
from .poller import PeriodicRefresher
from .refill import RefillWorkflow
from .security import is_address
from .state import build_leaderboard_payload, build_player_payload
from .submission import ScoreSubmissionWorkflow


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RefillResponse(CamelModel):
    ok: bool
    new_health: int
    health_increase: int
    message: str


class SubmitScoreRequest(CamelModel):
    player: str
    score: int


class SubmitScoreResponse(CamelModel):
    success: bool
    tx_ref: str | None
    block_ref: int | None
    run_id: str
    score: int
    reconciled: bool


class HealthEventRequest(CamelModel):
    player: str
    new_health: int


class RiskEventRequest(CamelModel):
    player: str
    risk_score: int
    event_type: str


class ReceiptResponse(CamelModel):
    success: bool
    tx_ref: str
    block_ref: int


class DifficultyResponse(CamelModel):
    difficulty: str


class OnrampResponse(CamelModel):
    url: str
    message: str


class PlayerStateHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, player: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[player.lower()].add(websocket)

    def subscribe(self, player: str, websocket: WebSocket) -> None:
        self._connections[player.lower()].add(websocket)

    def disconnect(self, player: str, websocket: WebSocket) -> None:
        connections = self._connections.get(player.lower())
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(player.lower(), None)

    def has_subscribers(self, player: str) -> bool:
        return bool(self._connections.get(player.lower()))

    async def send_state(self, websocket: WebSocket, payload: dict[str, Any]) -> None:
        await websocket.send_json({"type": "player.state", "payload": payload})

    async def broadcast_state(self, player: str, payload: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(player.lower(), set())):
            try:
                await self.send_state(websocket, payload)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(player=player, websocket=websocket)


def _utc_now_iso(clock: Callable[[], float]) -> str:
    return datetime.fromtimestamp(clock(), tz=timezone.utc).isoformat()


def _require_address(value: str | None) -> str:
    if not is_address(value):
        raise FishtankError(ErrorCategory.INVALID_PLAYER, f"not an account address: {value!r}")
    return value


def _parse_health(raw: str | None, max_health: int) -> int | None:
    """Missing means full health; None marks a malformed value."""
    if raw is None or raw == "":
        return max_health
    try:
        return int(raw)
    except ValueError:
        return None


def create_app(
    settings: BackendSettings | None = None,
    ledger: LedgerGateway | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    app = FastAPI(title="Fishtank API", version="0.1.0")
    app_settings = settings if settings is not None else load_settings()
    gateway = ledger if ledger is not None else create_ledger(app_settings)
    now = clock if clock is not None else time.time

    policy = PaymentPolicy(app_settings, create_verifier(app_settings, gateway))
    refill_workflow = RefillWorkflow(policy=policy, ledger=gateway, settings=app_settings, clock=now)
    submission_workflow = ScoreSubmissionWorkflow(ledger=gateway, settings=app_settings, clock=now)
    player_hub = PlayerStateHub()

    app.state.settings = app_settings
    app.state.ledger = gateway
    app.state.player_hub = player_hub

    async def load_player_payload(player: str) -> dict[str, Any]:
        state = await gateway.read_player_state(player)
        difficulty = await gateway.read_difficulty()
        return build_player_payload(player, state, difficulty)

    async def publish_player_state(player: str) -> None:
        if not player_hub.has_subscribers(player):
            return
        try:
            payload = await load_player_payload(player)
        except LedgerError as exc:
            logger.warning(f"Could not refresh state for {player} subscribers: {exc.details}")
            return
        await player_hub.broadcast_state(player=player, payload=payload)

    @app.exception_handler(FishtankError)
    async def fishtank_error_handler(request: Request, exc: FishtankError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.post("/api/refill", response_model=RefillResponse)
    async def refill(
        background_tasks: BackgroundTasks,
        x_payment: str | None = Header(default=None),
        x_current_health: str | None = Header(default=None),
        x_player_address: str | None = Header(default=None),
        x_challenge_id: str | None = Header(default=None),
    ) -> RefillResponse:
        proof = PaymentProof(
            token=x_payment,
            presented_health=_parse_health(x_current_health, app_settings.max_health),
            player_address=x_player_address or None,
            challenge_id=x_challenge_id,
        )
        grant = await refill_workflow.handle(proof)
        background_tasks.add_task(refill_workflow.record_event, grant)
        return RefillResponse(
            ok=True,
            new_health=grant.new_health,
            health_increase=grant.health_increase,
            message=f"Health refilled! +{grant.health_increase} HP",
        )

    @app.post("/api/fishtank/submit-score", response_model=SubmitScoreResponse)
    async def submit_score(payload: SubmitScoreRequest, background_tasks: BackgroundTasks) -> SubmitScoreResponse:
        result = await submission_workflow.submit(player=payload.player, score=payload.score)
        background_tasks.add_task(publish_player_state, payload.player)
        return SubmitScoreResponse(
            success=True,
            tx_ref=result.tx_ref,
            block_ref=result.block_ref,
            run_id=result.run_id,
            score=result.score,
            reconciled=result.reconciled,
        )

    @app.get("/api/fishtank/player/{address}")
    async def get_player(address: str) -> dict[str, Any]:
        return await load_player_payload(_require_address(address))

    @app.get("/api/fishtank/leaderboard")
    async def get_leaderboard(limit: int = Query(default=5, ge=1, le=5)) -> dict[str, Any]:
        entries = await gateway.read_top(TOP_SLOTS)
        return build_leaderboard_payload(entries, now(), limit=limit)

    @app.get("/api/fishtank/difficulty", response_model=DifficultyResponse)
    async def get_difficulty() -> DifficultyResponse:
        return DifficultyResponse(difficulty=str(await gateway.read_difficulty()))

    @app.post("/api/fishtank/event/health", response_model=ReceiptResponse)
    async def post_health_event(payload: HealthEventRequest) -> ReceiptResponse:
        player = _require_address(payload.player)
        if not 0 <= payload.new_health <= app_settings.max_health:
            raise FishtankError(ErrorCategory.INVALID_HEALTH_VALUE, f"health out of range: {payload.new_health}")
        receipt = await gateway.record_refill_event(player, payload.new_health)
        return ReceiptResponse(success=True, tx_ref=receipt.tx_ref, block_ref=receipt.block_ref)

    @app.post("/api/fishtank/event/risk", response_model=ReceiptResponse)
    async def post_risk_event(payload: RiskEventRequest) -> ReceiptResponse:
        player = _require_address(payload.player)
        if payload.risk_score < 0 or not payload.event_type.strip():
            raise FishtankError(ErrorCategory.INVALID_RISK_EVENT, "risk score must be >= 0 with an event type")
        receipt = await gateway.record_risk_event(player, payload.risk_score, payload.event_type)
        return ReceiptResponse(success=True, tx_ref=receipt.tx_ref, block_ref=receipt.block_ref)

    @app.get("/api/onramp-url", response_model=OnrampResponse)
    def get_onramp_url(address: str = Query(min_length=1)) -> OnrampResponse:
        url = build_onramp_url(
            _require_address(address),
            app_id=app_settings.onramp_app_id,
            network=app_settings.refill_network,
            asset=app_settings.refill_currency,
        )
        return OnrampResponse(
            url=url,
            message=f"Open this URL to buy {app_settings.refill_currency} on {app_settings.refill_network}",
        )

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": _utc_now_iso(now),
            "env": {
                "ledger": type(gateway).__name__,
                "proofMode": app_settings.proof_mode,
                "refillReceiver": app_settings.refill_receiver,
            },
        }

    @app.websocket("/ws/fishtank/player/{address}")
    async def player_ws(websocket: WebSocket, address: str) -> None:
        if not is_address(address):
            await websocket.close(code=1008)
            return

        await player_hub.connect(player=address, websocket=websocket)

        async def push(payload: dict[str, Any]) -> None:
            await player_hub.send_state(websocket, payload)

        refresher = PeriodicRefresher(
            subject=address,
            fetch=load_player_payload,
            on_result=push,
            interval_seconds=app_settings.player_refresh_seconds,
            name="player-state",
        )
        refresher.start()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if not isinstance(message, dict) or message.get("type") != "watch":
                    continue
                player = message.get("player")
                if not is_address(player) or player.lower() == refresher.subject.lower():
                    continue
                player_hub.disconnect(player=refresher.subject, websocket=websocket)
                player_hub.subscribe(player=player, websocket=websocket)
                await refresher.rebind(player)
        except WebSocketDisconnect:
            pass
        finally:
            await refresher.stop()
            player_hub.disconnect(player=refresher.subject, websocket=websocket)

    return app


app = create_app()
