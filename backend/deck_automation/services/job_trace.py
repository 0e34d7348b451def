from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select

from deck_automation.config import settings
from deck_automation.db import SessionLocal
from deck_automation.models import AutomationRun, GenerationJobRecord, RunEvent
from deck_automation.services.gamma_client import GenerationJob
from deck_automation.services.progress_events import ProgressEvent


def _safe_json(value: Any) -> str:
    try:
        return json.dumps(value if value is not None else {}, ensure_ascii=False, default=str)
    except Exception:
        return "{}"


def decode_payload(payload_json: str | None) -> dict[str, Any]:
    if not payload_json:
        return {}
    try:
        parsed = json.loads(payload_json)
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    except Exception:
        return {}


def create_run(*, run_id: str, mode: str, payload: dict[str, Any] | None = None) -> None:
    db = SessionLocal()
    try:
        db.add(AutomationRun(id=run_id, mode=mode, status="running", payload_json=_safe_json(payload)))
        db.commit()
    finally:
        db.close()


def update_run(run_id: str, **fields: Any) -> None:
    db = SessionLocal()
    try:
        row = db.get(AutomationRun, run_id)
        if row is None:
            return
        for key, value in fields.items():
            setattr(row, key, value)
        if fields.get("status") not in (None, "running"):
            row.finished_at = datetime.utcnow()
        db.add(row)
        db.commit()
    except Exception:
        db.rollback()
    finally:
        db.close()


def is_cancel_requested(run_id: str) -> bool:
    db = SessionLocal()
    try:
        row = db.get(AutomationRun, run_id)
        return bool(row and row.cancel_requested)
    finally:
        db.close()


def record_run_event(run_id: str, event: ProgressEvent) -> None:
    if not settings.persist_run_events:
        return
    db = SessionLocal()
    try:
        db.add(
            RunEvent(
                run_id=run_id,
                ts=datetime.utcnow(),
                event_type=event.type,
                payload_json=_safe_json(event.fields),
                severity=event.severity,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
    finally:
        db.close()


def list_run_events(run_id: str, *, limit: int = 400) -> list[RunEvent]:
    db = SessionLocal()
    try:
        return db.scalars(
            select(RunEvent)
            .where(RunEvent.run_id == run_id)
            .order_by(RunEvent.ts.asc(), RunEvent.id.asc())
            .limit(max(1, min(limit, settings.run_events_page_size)))
        ).all()
    finally:
        db.close()


def upsert_generation_job(run_id: str | None, job: GenerationJob) -> None:
    if not job.id:
        return
    db = SessionLocal()
    try:
        row = db.get(GenerationJobRecord, job.id)
        if row is None:
            row = GenerationJobRecord(
                generation_id=job.id,
                run_id=run_id,
                unit_name=job.unit_name,
                part_name=job.part_name,
            )
        row.state = job.state.value
        row.result_url = job.result_url
        row.download_url = job.download_url
        row.error = _safe_json(job.error) if job.error is not None else None
        row.updated_at = datetime.utcnow()
        db.add(row)
        db.commit()
    except Exception:
        db.rollback()
    finally:
        db.close()
