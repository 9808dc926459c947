"""
BinWatch — API Server (Transport Layer)
========================================
FastAPI transport layer over the document store.
  - Ingests sensor readings (the reading-created trigger runs the processor)
  - Dashboard stats for authenticated users
  - Alert list + operator acknowledgement
  - Manual weekly-summary run (admin token)
  - Background: weekly summary scheduler, pending-reading sweep, simulator
"""
import logging
import os
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from alerting import errors
from alerting.lifecycle import AlertLifecycleManager
from alerting.processor import ReadingProcessor, validate_weight
from alerting.registry import BinRegistry, ensure_user, find_user_by_token
from alerting.scheduler import WeeklySummaryScheduler
from alerting.stats import dashboard_stats
from alerting.summary import WeeklySummaryAggregator
from config.settings import (
    ADMIN_TOKEN, INLINE_PROCESSING, LOG_FORMAT, LOG_LEVEL,
    PENDING_SWEEP_SEC, SERVER_HOST, SERVER_PORT,
)
from simulator import BinSimulator, default_bins, local_submitter
from storage.documents import create_store

logger = logging.getLogger("api")

# ═══════════════════════════════════════════════════════════════════════════
# SERVICES (module state; swapped wholesale by init_services)
# ═══════════════════════════════════════════════════════════════════════════
store = None
registry = None
lifecycle = None
processor = None
aggregator = None


def init_services(new_store=None, inline_processing=INLINE_PROCESSING):
    """Wire every service to one store. Tests call this with a MemoryStore."""
    global store, registry, lifecycle, processor, aggregator
    if processor is not None:
        processor.detach()
    store = new_store if new_store is not None else create_store()
    registry = BinRegistry(store)
    lifecycle = AlertLifecycleManager(store)
    processor = ReadingProcessor(store, lifecycle=lifecycle, registry=registry)
    aggregator = WeeklySummaryAggregator(store, registry=registry)
    if inline_processing:
        processor.attach()
    return store


init_services()


# ═══════════════════════════════════════════════════════════════════════════
# BACKGROUND WORKERS
# ═══════════════════════════════════════════════════════════════════════════
_stop = threading.Event()


def _pending_sweep():
    """Redeliver readings whose processing failed (at-least-once)."""
    while not _stop.wait(PENDING_SWEEP_SEC):
        try:
            processor.process_pending()
        except Exception:
            logger.exception("[Sweep] Error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    logger.info("═" * 55)
    logger.info("  BinWatch — API Server v1.0")
    logger.info("═" * 55)
    logger.info("  Store           : %s", store.backend)
    logger.info("  Bins seeded     : %d", registry.seed())
    ensure_user(store, "admin", ADMIN_TOKEN, name="Administrator", role="admin")
    logger.info("  Inline processing: %s", "on" if INLINE_PROCESSING else "off (reading_engine.py)")

    _stop.clear()
    scheduler = WeeklySummaryScheduler(aggregator)
    scheduler.start()
    if INLINE_PROCESSING:
        threading.Thread(target=_pending_sweep, daemon=True).start()
        logger.info("  Pending sweep started (%ss interval)", PENDING_SWEEP_SEC)

    simulator = None
    if os.getenv("SIMULATOR_ENABLED", "false").lower() in ("1", "true", "yes"):
        simulator = BinSimulator(default_bins(), local_submitter(processor))
        simulator.start()

    yield

    _stop.set()
    scheduler.stop()
    if simulator:
        simulator.stop()
    logger.info("✅ Shutdown complete")


app = FastAPI(title="BinWatch", version="1.0", lifespan=lifespan)


def _describe_validation_errors(errs):
    missing = [str(e["loc"][-1]) for e in errs if e.get("type") == "missing" and len(e["loc"]) > 1]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    messages = []
    for e in errs:
        loc = e.get("loc", ())
        if len(loc) <= 1:
            return "Request body must be a JSON object"
        messages.append(e["msg"].removeprefix("Value error, "))
    return "; ".join(messages)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("400 on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": _describe_validation_errors(exc.errors())})


# ═══════════════════════════════════════════════════════════════════════════
# REQUEST MODELS (strict)
# ═══════════════════════════════════════════════════════════════════════════
class IngestReading(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    bin_id: str = Field(min_length=1)
    weight_kg: float
    timestamp: Optional[datetime] = None

    @field_validator("bin_id", mode="before")
    @classmethod
    def _bin_id_is_text(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("binId must be a non-empty string")
        return v.strip()

    @field_validator("weight_kg", mode="before")
    @classmethod
    def _weight_is_number(cls, v):
        try:
            return validate_weight(v)
        except errors.ValidationError as e:
            raise ValueError(str(e)) from e

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# ═══════════════════════════════════════════════════════════════════════════
# AUTH HELPERS
# ═══════════════════════════════════════════════════════════════════════════
def _bearer_token(authorization: Optional[str]):
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


def _check_admin_token(authorization: Optional[str]) -> bool:
    """Strict admin token check."""
    return _bearer_token(authorization) == ADMIN_TOKEN


def _resolve_user(authorization: Optional[str]):
    """(user, None) or (None, error response)."""
    token = _bearer_token(authorization)
    if token is None:
        return None, JSONResponse(
            content={"error": "unauthenticated", "message": "User must be authenticated"},
            status_code=401,
        )
    user = find_user_by_token(store, token)
    if user is None:
        return None, JSONResponse(
            content={"error": "not-found", "message": "User not found"},
            status_code=404,
        )
    return user, None


# ═══════════════════════════════════════════════════════════════════════════
# INGESTION
# ═══════════════════════════════════════════════════════════════════════════
@app.post("/api/readings", status_code=201)
def ingest_reading(body: IngestReading):
    """IoT ingestion: append a reading. Processing runs on the reading-created trigger."""
    try:
        reading = processor.record_reading(body.bin_id, body.weight_kg, ts=body.timestamp)
    except errors.ValidationError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    except Exception:
        logger.exception("Error ingesting reading bin=%s", body.bin_id)
        return JSONResponse(content={"error": "Internal server error"}, status_code=500)

    return JSONResponse(
        content={"success": True, "id": reading.id, "message": "Reading recorded successfully"},
        status_code=201,
    )


# ═══════════════════════════════════════════════════════════════════════════
# DASHBOARD & ALERTS
# ═══════════════════════════════════════════════════════════════════════════
@app.get("/api/dashboard/stats")
def get_dashboard_stats(authorization: Optional[str] = Header(None)):
    """Today's totals. Internal failures are reported without detail."""
    user, error = _resolve_user(authorization)
    if error:
        return error
    try:
        return JSONResponse(content=dashboard_stats(store, registry=registry))
    except Exception:
        logger.exception("Error getting dashboard stats user=%s", user.id)
        return JSONResponse(
            content={"error": "internal", "message": "Error getting dashboard statistics"},
            status_code=500,
        )


@app.get("/api/alerts")
def get_alerts(unacknowledged: bool = False, bin_id: Optional[str] = None, limit: int = 50):
    alerts = lifecycle.list_alerts(bin_id=bin_id, unacknowledged_only=unacknowledged, limit=limit)
    return JSONResponse(content={
        "alerts": [{"id": a.id, **a.to_document()} for a in alerts],
        "total": len(alerts),
    })


@app.post("/api/alerts/{alert_id}/ack")
def acknowledge_alert(alert_id: str, authorization: Optional[str] = Header(None)):
    """Operator: mark an alert handled."""
    user, error = _resolve_user(authorization)
    if error:
        return error
    try:
        alert = lifecycle.acknowledge(alert_id, user_id=user.id)
    except errors.NotFoundError as e:
        return JSONResponse(content={"error": str(e)}, status_code=404)
    return JSONResponse(content={"status": "acknowledged", "alert": {"id": alert.id, **alert.to_document()}})


@app.get("/api/bins")
def get_bins():
    """Bin registry with the current unacknowledged alert kind per bin."""
    result = {}
    for bin_ in registry.all_bins():
        current = lifecycle.open_alert(bin_.id)
        result[bin_.id] = {
            **bin_.to_document(),
            "alert": current.kind.value if current else None,
        }
    return JSONResponse(content={"bins": result})


# ═══════════════════════════════════════════════════════════════════════════
# ADMIN
# ═══════════════════════════════════════════════════════════════════════════
@app.post("/api/summaries/run")
def run_weekly_summary(authorization: Optional[str] = Header(None)):
    """Admin: build summaries for the trailing week now."""
    if not _check_admin_token(authorization):
        return JSONResponse(content={"error": "Unauthorized"}, status_code=401)
    try:
        summaries = aggregator.summarize_last_week()
    except errors.TransientStoreError:
        logger.exception("Manual weekly summary failed")
        return JSONResponse(content={"error": "Summary generation failed"}, status_code=503)
    return JSONResponse(content={
        "status": "ok",
        "count": len(summaries),
        "summaries": [{"id": s.id, **s.to_document()} for s in summaries],
    })


@app.get("/health")
async def health_check():
    return JSONResponse(content={
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": store.backend,
        "inline_processing": INLINE_PROCESSING,
    })


# ═══════════════════════════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host=SERVER_HOST, port=SERVER_PORT, reload=False)
