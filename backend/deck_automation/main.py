from __future__ import annotations

import logging
import secrets
from uuid import uuid4

import requests
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from deck_automation.config import settings
from deck_automation.db import Base, engine, get_db
from deck_automation.models import AutomationRun
from deck_automation.schemas import (
    AutomateRequest,
    CancelOut,
    GenerationStatusOut,
    RunEventOut,
    RunOut,
    RunStartedOut,
    SaveKeyOut,
    SaveKeyRequest,
    UpdatePendingOut,
    UpdatePendingRequest,
)
from deck_automation.services import credential_store, job_trace, run_registry
from deck_automation.services.automation_service import AutomationSession, iter_recorded_events
from deck_automation.services.gamma_client import GammaClient, GammaRequestError, RunBudget
from deck_automation.services.google_workspace import GoogleWorkspaceError, extract_drive_id
from deck_automation.services.progress_events import sse_packet
from deck_automation.services.reconciliation import reconcile_sheet, sweep_tracking_sheets
from deck_automation.services.tracking_store import TrackingStoreError, tracking_store_from_tokens
from deck_automation.tasks import run_automation_job

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin, "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger("deck_automation.jobs")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class _AccessLogPathFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return f'"GET {settings.api_prefix}/runs/' not in message


def _configure_runtime_logging() -> None:
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    for name in ("deck_automation", "deck_automation.jobs", "deck_automation.providers", "deck_automation.gamma", "deck_automation.tracking"):
        logging.getLogger(name).setLevel(level)

    if settings.suppress_httpx_info_logs:
        for name in ("httpx", "httpcore", "googleapiclient", "google_genai", "openai", "anthropic"):
            logging.getLogger(name).setLevel(logging.WARNING)

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(row, _AccessLogPathFilter) for row in access_logger.filters):
        access_logger.addFilter(_AccessLogPathFilter())


@app.on_event("startup")
def on_startup():
    _configure_runtime_logging()
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health():
    return {"status": "ok"}


def _require_google_tokens(tokens: dict | None) -> dict:
    resolved = tokens or credential_store.google_tokens()
    if not resolved:
        raise HTTPException(status_code=401, detail="Google tokens are required")
    return resolved


def _gamma_client() -> GammaClient:
    try:
        return GammaClient(credential_store.gamma_api_key())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _stream_run(session: AutomationSession):
    try:
        for event in iter_recorded_events(session):
            yield sse_packet(event)
    finally:
        run_registry.unregister(session.run_id)


@app.post(f"{settings.api_prefix}/automate")
def automate(payload: AutomateRequest):
    run_id = str(uuid4())
    job_trace.create_run(run_id=run_id, mode="stream", payload=payload.model_dump(exclude={"gemini_api_key", "google_tokens"}))
    budget = RunBudget(
        payload.max_duration_seconds or settings.run_max_duration_seconds,
        abort_signal=lambda: job_trace.is_cancel_requested(run_id),
    )
    run_registry.register(run_id, budget)
    session = AutomationSession(payload, run_id=run_id, budget=budget)
    logger.info("run=%s stream_start drive_file=%s", run_id, extract_drive_id(payload.drive_file_id))
    return StreamingResponse(_stream_run(session), media_type="text/event-stream", headers=SSE_HEADERS)


@app.post(f"{settings.api_prefix}/runs", response_model=RunStartedOut)
def start_run(payload: AutomateRequest):
    run_id = str(uuid4())
    job_trace.create_run(run_id=run_id, mode="background", payload=payload.model_dump(exclude={"gemini_api_key", "google_tokens"}))
    run_automation_job.delay(run_id, payload.model_dump(mode="json"))
    return RunStartedOut(run_id=run_id)


@app.get(f"{settings.api_prefix}/runs/{{run_id}}", response_model=RunOut)
def get_run(run_id: str, db: Session = Depends(get_db)):
    run = db.get(AutomationRun, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@app.post(f"{settings.api_prefix}/runs/{{run_id}}/cancel", response_model=CancelOut)
def cancel_run(run_id: str, db: Session = Depends(get_db)):
    run = db.get(AutomationRun, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    if run.status != "running":
        return CancelOut(run_id=run_id, cancelled=False)

    run_registry.cancel(run_id)
    run.cancel_requested = 1
    db.add(run)
    db.commit()
    logger.info("run=%s cancel_requested", run_id)
    return CancelOut(run_id=run_id, cancelled=True)


@app.get(f"{settings.api_prefix}/runs/{{run_id}}/events", response_model=list[RunEventOut])
def get_run_events(
    run_id: str,
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
):
    if not db.get(AutomationRun, run_id):
        raise HTTPException(status_code=404, detail="Run not found")

    return [
        RunEventOut(
            id=row.id,
            run_id=row.run_id,
            ts=row.ts,
            event_type=row.event_type,
            payload=job_trace.decode_payload(row.payload_json),
            severity=row.severity,
        )
        for row in job_trace.list_run_events(run_id, limit=limit)
    ]


@app.post(f"{settings.api_prefix}/update-pending", response_model=UpdatePendingOut)
def update_pending(payload: UpdatePendingRequest):
    tokens = _require_google_tokens(payload.google_tokens)
    client = _gamma_client()
    try:
        result = reconcile_sheet(tracking_store_from_tokens(tokens), client, extract_drive_id(payload.spreadsheet_id))
    except (TrackingStoreError, GoogleWorkspaceError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    if not result.checked:
        message = "No pending presentations found"
    else:
        message = f"Checked {result.checked} pending presentations, updated {result.updated}"
    return UpdatePendingOut(
        message=message,
        total_checked=result.checked,
        updated=result.updated,
        updates=result.updates,
    )


@app.get(f"{settings.api_prefix}/cron/check-pending")
def cron_check_pending(authorization: str | None = Header(default=None)):
    expected = f"Bearer {settings.cron_secret}" if settings.cron_secret else None
    if not expected or not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not settings.tracking_sheets:
        return {"success": True, "message": "No tracking sheets configured", "totalChecked": 0, "totalUpdated": 0, "results": []}

    tokens = _require_google_tokens(None)
    result = sweep_tracking_sheets(tracking_store_from_tokens(tokens), _gamma_client(), settings.tracking_sheets)
    return {"success": True, **result.as_dict()}


@app.get(f"{settings.api_prefix}/status/{{generation_id}}", response_model=GenerationStatusOut)
def generation_status(generation_id: str):
    client = _gamma_client()
    try:
        snapshot = client.check_status(generation_id)
    except GammaRequestError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return GenerationStatusOut(
        generation_id=generation_id,
        status=snapshot.status,
        state=snapshot.state.value,
        gamma_url=snapshot.result_url,
        download_url=snapshot.download_url,
        error=snapshot.error,
    )


@app.get(f"{settings.api_prefix}/themes")
def list_themes():
    client = _gamma_client()
    try:
        return client.list_themes()
    except GammaRequestError as exc:
        raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
    except requests.RequestException as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post(f"{settings.api_prefix}/save-key", response_model=SaveKeyOut)
def save_key(payload: SaveKeyRequest):
    saved = credential_store.save_credentials(
        gamma_api_key=payload.api_key.strip() if payload.api_key else None,
        google_tokens=payload.google_tokens,
    )
    return SaveKeyOut(saved=saved)
