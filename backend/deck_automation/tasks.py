from __future__ import annotations

import logging

from deck_automation.celery_app import celery_app
from deck_automation.config import settings
from deck_automation.schemas import AutomateRequest
from deck_automation.services import credential_store, job_trace
from deck_automation.services.automation_service import AutomationSession, iter_recorded_events
from deck_automation.services.gamma_client import GammaClient, RunBudget
from deck_automation.services.reconciliation import sweep_tracking_sheets
from deck_automation.services.tracking_store import tracking_store_from_tokens


logger = logging.getLogger("deck_automation.jobs")


def _configure_worker_logging() -> None:
    level = getattr(logging, str(settings.log_level).upper(), logging.INFO)
    logging.getLogger("deck_automation").setLevel(level)
    if settings.suppress_httpx_info_logs:
        for name in ("httpx", "httpcore", "googleapiclient", "google_genai", "openai", "anthropic"):
            logging.getLogger(name).setLevel(logging.WARNING)


_configure_worker_logging()


@celery_app.task(name="deck_automation.tasks.run_automation_job")
def run_automation_job(run_id: str, payload: dict) -> str:
    request = AutomateRequest.model_validate(payload)
    budget = RunBudget(
        request.max_duration_seconds or settings.run_max_duration_seconds,
        abort_signal=lambda: job_trace.is_cancel_requested(run_id),
    )
    session = AutomationSession(request, run_id=run_id, budget=budget)
    logger.info("run=%s background_run_start", run_id)
    for _ in iter_recorded_events(session):
        pass
    logger.info("run=%s background_run_done status=%s", run_id, session.status)
    return session.status


@celery_app.task(name="deck_automation.tasks.sweep_pending_tracking_sheets")
def sweep_pending_tracking_sheets() -> dict:
    if not settings.tracking_sheets:
        logger.info("sweep_skipped reason=no_tracking_sheets")
        return {"totalChecked": 0, "totalUpdated": 0, "results": []}

    tokens = credential_store.google_tokens()
    if not tokens:
        raise RuntimeError("Stored Google tokens are required for the pending sweep")

    result = sweep_tracking_sheets(
        tracking_store_from_tokens(tokens),
        GammaClient(credential_store.gamma_api_key()),
        settings.tracking_sheets,
    )
    return result.as_dict()
