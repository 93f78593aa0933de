from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import asyncio
import logging
import os

from alerts import heart_rate_breach
from simulator import HealthSimulator, HealthData

from .db import make_engine, make_session_factory
from .schemas import (
    Alert, AlertEnvelope, AlertIn, EmergencyAlertIn, Settings, SettingsIn, TestAlertIn,
)
from .store import MemStorage, SqlStorage, StoreError

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
HEALTH_INTERVAL = float(os.getenv("HEALTH_INTERVAL_SECONDS", "5"))

DEFAULT_SETTINGS = Settings(
    caregiver_name="",
    caregiver_phone="",
    min_heart_rate=50,
    max_heart_rate=120,
    fall_sensitivity="medium",
)

VALIDATION_MESSAGES = {
    ("POST", "/api/alerts"): "Invalid alert data",
    ("POST", "/api/settings"): "Invalid settings data",
    ("POST", "/api/emergency-alert"): "Invalid emergency alert data",
    ("POST", "/api/test-alert"): "Invalid test alert data",
}

# test hooks a websocket client can send as plain text
SIM_COMMANDS = {
    "high": HealthSimulator.simulate_high_heart_rate,
    "low": HealthSimulator.simulate_low_heart_rate,
    "normal": HealthSimulator.reset_to_normal,
    "toggle_fall": HealthSimulator.toggle_fall_detection,
}


def build_store(backend: str = STORE_BACKEND):
    if backend == "sql":
        return SqlStorage(make_session_factory(make_engine()))
    return MemStorage()


store = build_store()


def get_store():
    return store


app = FastAPI(title="CareConnect API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("WS_ORIGIN", "*")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    logger.info("CareConnect API started with %s store", type(store).__name__)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    default = "Invalid query parameters" if request.method == "GET" else "Invalid request data"
    message = VALIDATION_MESSAGES.get((request.method, request.url.path), default)
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


@app.get("/api/alerts", response_model=list[Alert])
def get_alerts(limit: int = Query(50, ge=1, le=500), db=Depends(get_store)):
    try:
        return db.get_alerts(limit=limit)
    except StoreError:
        logger.exception("Failed to fetch alerts")
        raise HTTPException(status_code=500, detail="Failed to fetch alerts")


@app.post("/api/alerts", response_model=Alert, status_code=201)
def create_alert(body: AlertIn, db=Depends(get_store)):
    try:
        return db.create_alert(body)
    except StoreError:
        logger.exception("Failed to create alert")
        raise HTTPException(status_code=500, detail="Failed to create alert")


@app.get("/api/alerts/{alert_id}", response_model=Alert)
def get_alert(alert_id: str, db=Depends(get_store)):
    try:
        alert = db.get_alert(alert_id)
    except StoreError:
        logger.exception("Failed to fetch alert %s", alert_id)
        raise HTTPException(status_code=500, detail="Failed to fetch alert")
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.get("/api/settings", response_model=Settings, response_model_exclude_none=True)
def get_settings(db=Depends(get_store)):
    try:
        settings = db.get_settings()
    except StoreError:
        logger.exception("Failed to fetch settings")
        raise HTTPException(status_code=500, detail="Failed to fetch settings")
    return settings or DEFAULT_SETTINGS


@app.post("/api/settings", response_model=Settings)
def save_settings(body: SettingsIn, db=Depends(get_store)):
    try:
        return db.upsert_settings(body)
    except StoreError:
        logger.exception("Failed to save settings")
        raise HTTPException(status_code=500, detail="Failed to save settings")


@app.post("/api/emergency-alert", response_model=AlertEnvelope)
def emergency_alert(body: EmergencyAlertIn, db=Depends(get_store)):
    try:
        alert = db.create_alert(AlertIn(
            type="emergency",
            description="Emergency SOS button pressed",
            location=body.location or "Location unavailable",
            heart_rate=body.heart_rate,
        ))
    except StoreError:
        logger.exception("Failed to send emergency alert")
        raise HTTPException(status_code=500, detail="Failed to send emergency alert")

    # No SMS gateway; the log line stands in for the caregiver notification.
    logger.info("Emergency alert created: %s at %s", alert.id, alert.location)
    return AlertEnvelope(success=True, alert=alert)


@app.post("/api/test-alert", response_model=AlertEnvelope)
def test_alert(body: TestAlertIn, db=Depends(get_store)):
    try:
        alert = db.create_alert(AlertIn(
            type="test",
            description="Test SMS sent successfully",
            location=f"Phone: {body.caregiver_phone}",
        ))
    except StoreError:
        logger.exception("Failed to send test alert")
        raise HTTPException(status_code=500, detail="Failed to send test alert")

    logger.info("Test alert sent to: %s", body.caregiver_phone)
    return AlertEnvelope(success=True, alert=alert)


def evaluate_reading(db, data: HealthData):
    settings = db.get_settings() or DEFAULT_SETTINGS
    description = heart_rate_breach(data.heart_rate, settings.min_heart_rate, settings.max_heart_rate)
    payload = data.to_dict()
    payload["alert"] = None
    if description:
        alert = db.create_alert(AlertIn(type="heart_rate", description=description, heart_rate=data.heart_rate))
        payload["alert"] = alert.model_dump(mode="json", by_alias=True)
    return payload


@app.websocket("/ws/health")
async def ws_health(ws: WebSocket, interval: float = HEALTH_INTERVAL, db=Depends(get_store)):
    await ws.accept()
    # one simulator per connection
    sim = HealthSimulator()
    data = sim.tick()
    try:
        while True:
            try:
                payload = evaluate_reading(db, data)
            except StoreError:
                logger.exception("Could not evaluate reading")
                payload = {**data.to_dict(), "alert": None}
            await ws.send_json(payload)

            try:
                command = await asyncio.wait_for(ws.receive_text(), timeout=interval)
            except asyncio.TimeoutError:
                data = sim.tick()
                continue

            hook = SIM_COMMANDS.get(command.strip())
            if hook is None:
                await ws.send_json({"error": f"Unknown command: {command}"})
                data = sim.current()
                continue
            data = hook(sim)
    except WebSocketDisconnect:
        return
