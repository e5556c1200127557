"""FX BIAS PULSE — FastAPI REST API.

The app owns exactly one BiasService, built by the factory handed to
``create_app`` when the lifespan starts and closed when it ends. Handlers
reach it through ``request.app.state.service``.
"""
import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from common.exceptions import ConfigurationError, ServiceClosedError, UnknownAssetError
from common.logger import get_logger
from common.models import AssetCode
from ingest.policy_rates import PolicyRateProvider
from ingest.yahoo_finance import PriceTrendProvider
from scoring.aggregator import ScoringRun
from service import BiasService, resolve_asset
from storage import database

logger = get_logger("api")


class ConnectionManager:
    """Manages active WebSocket connections and broadcasts messages."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, payload: dict):
        message = json.dumps(payload)
        dead = []
        for ws in self.active_connections:
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


def default_service() -> BiasService:
    return BiasService(
        technical_provider=PriceTrendProvider(),
        central_bank_provider=PolicyRateProvider(),
    )


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _service(request: Request) -> BiasService:
    return request.app.state.service


def _asset_or_404(asset: str) -> AssetCode:
    try:
        return resolve_asset(asset)
    except UnknownAssetError as e:
        raise HTTPException(404, str(e))


router = APIRouter()


@router.get("/health")
def health(request: Request):
    h = _service(request).health.snapshot()
    return {"status": h.system_status.value, "alerts": h.active_alerts, "timestamp": _now()}


@router.get("/assets")
def get_assets():
    return [{"asset": a.value, "is_metal": a.is_metal} for a in AssetCode]


@router.get("/status")
def get_status(request: Request):
    return _service(request).get_service_status().model_dump(mode="json")


@router.get("/factors")
def get_factors(request: Request):
    factors = _service(request).get_fundamental_factors()
    return {name: f.model_dump(mode="json") for name, f in factors.items()}


@router.get("/scores")
def get_all_scores(request: Request):
    """Latest cached score for every asset scored so far, in asset order."""
    scores = _service(request).get_all_bias_scores()
    if not scores:
        return {"scores": [], "note": "No scores yet, scoring in progress..."}
    return {"scores": [s.model_dump(mode="json") for s in scores],
            "count": len(scores), "timestamp": _now()}


@router.get("/score/{asset}")
def get_score(asset: str, request: Request):
    code = _asset_or_404(asset)
    score = _service(request).get_asset_bias_score(code)
    if score is None:
        raise HTTPException(404, f"No score yet for {code.value}")
    return score.model_dump(mode="json")


@router.post("/score/{asset}/refresh")
async def refresh_score(asset: str, request: Request, reason: str = "api"):
    code = _asset_or_404(asset)
    try:
        outcomes = await _service(request).trigger_asset_update(code, reason)
    except ServiceClosedError as e:
        raise HTTPException(503, str(e))
    return {"asset": code.value, "outcomes": [o.model_dump(mode="json") for o in outcomes]}


@router.post("/scores/recalculate")
async def recalculate(request: Request):
    try:
        scores = await _service(request).recalculate_all_scores()
    except ServiceClosedError as e:
        raise HTTPException(503, str(e))
    return {"scores": [s.model_dump(mode="json") for s in scores], "count": len(scores)}


@router.post("/events", status_code=201)
def add_event(payload: dict[str, Any], request: Request):
    try:
        event = _service(request).add_scheduled_event(payload)
    except ConfigurationError as e:
        raise HTTPException(422, e.reason)
    return event.model_dump(mode="json")


@router.post("/records/{kind}", status_code=202)
def submit_record(kind: str, payload: dict[str, Any], request: Request):
    accepted = _service(request).submit_raw(kind, payload)
    if not accepted:
        raise HTTPException(422, f"{kind} record rejected")
    return {"accepted": True}


@router.get("/history/{asset}")
async def get_history(asset: str, request: Request, days: int = 30):
    code = _asset_or_404(asset)
    df = await _service(request).get_score_history(code, days)
    records = json.loads(df.to_json(orient="records", date_format="iso")) if not df.empty else []
    return {"asset": code.value, "history": records, "days": days}


def create_app(service_factory: Optional[Callable[[], BiasService]] = None,
               initial_recalculation: bool = True) -> FastAPI:
    factory = service_factory or default_service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database.USE_POSTGRES:
            await database.init_db()
        service = factory()
        manager = ConnectionManager()

        async def broadcast(run: ScoringRun) -> None:
            await manager.broadcast({
                "type": "score_update",
                "timestamp": _now(),
                "score": run.score.model_dump(mode="json"),
            })

        app.state.service = service
        app.state.manager = manager
        service.add_listener(broadcast)
        await service.start()
        warmup = asyncio.create_task(service.recalculate_all_scores()) if initial_recalculation else None
        try:
            yield
        finally:
            if warmup is not None and not warmup.done():
                warmup.cancel()
                await asyncio.gather(warmup, return_exceptions=True)
            await service.close()

    app = FastAPI(title="FX BIAS PULSE API", version="0.3.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware,
        allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    # Mount routes at root (for nginx) and at /api (for direct browser access)
    app.include_router(router)
    app.include_router(router, prefix="/api")

    @app.websocket("/ws/live")
    async def websocket_live(websocket: WebSocket):
        """WebSocket endpoint — pushes every published score in real time."""
        manager: ConnectionManager = websocket.app.state.manager
        await manager.connect(websocket)
        try:
            scores = websocket.app.state.service.get_all_bias_scores()
            await websocket.send_text(json.dumps({
                "type": "scores_snapshot",
                "timestamp": _now(),
                "scores": [s.model_dump(mode="json") for s in scores],
            }))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


app = create_app()
