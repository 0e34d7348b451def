from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from functools import partial

from deck_automation.config import settings
from deck_automation.providers.factory import get_provider
from deck_automation.schemas import AutomateRequest
from deck_automation.services import credential_store, export_service, job_trace
from deck_automation.services import progress_events as events
from deck_automation.services.gamma_client import GammaClient, GenerationOptions, RunBudget
from deck_automation.services.google_workspace import (
    build_drive_service,
    build_sheets_service,
    credentials_from_tokens,
    extract_drive_id,
    fetch_drive_file,
)
from deck_automation.services.progress_events import ProgressEvent
from deck_automation.services.run_coordinator import RunCoordinator
from deck_automation.services.topic_source import parse_toc_workbook
from deck_automation.services.tracking_store import TrackingStore


logger = logging.getLogger("deck_automation.jobs")


def _event_log(run_id: str, event: ProgressEvent) -> None:
    job_trace.record_run_event(run_id, event)
    details = json.dumps(event.fields, ensure_ascii=False, default=str)
    if event.severity == "info":
        logger.info("run=%s %s | %s", run_id, event.type, details)
    else:
        logger.warning("run=%s %s | %s", run_id, event.type, details)


class AutomationSession:
    """One automation run: setup, then the coordinator's unit loop.

    Any failure during setup (credentials, Drive fetch, workbook parsing,
    tracking sheet lookup) ends the run with a single ``error`` event.
    """

    def __init__(self, request: AutomateRequest, *, run_id: str, budget: RunBudget):
        self.request = request
        self.run_id = run_id
        self.budget = budget
        self.status = "running"

    def events(self) -> Iterator[ProgressEvent]:
        request = self.request
        yield events.progress("Starting automation...", runId=self.run_id)
        try:
            provider_name = request.provider or settings.default_llm_provider
            provider = get_provider(
                provider_name,
                api_key=request.gemini_api_key if provider_name.lower() == "gemini" else None,
            )
            gamma = GammaClient(credential_store.gamma_api_key())

            tokens = request.google_tokens or credential_store.google_tokens()
            if not tokens:
                raise ValueError("Google tokens are required")
            credentials = credentials_from_tokens(tokens)
            drive = build_drive_service(credentials)
            sheets = build_sheets_service(credentials)

            yield events.progress("Fetching Excel file from Drive...")
            content = fetch_drive_file(drive, extract_drive_id(request.drive_file_id))
            yield events.progress("Excel file fetched successfully")

            yield events.progress("Parsing Excel ToC...")
            source = parse_toc_workbook(content)
            yield events.progress(f"Found {len(source.units)} units")

            tracking = None
            handle = None
            folder_id = extract_drive_id(request.drive_folder_id)
            if folder_id:
                tracking = TrackingStore(sheets, drive)
                handle = tracking.find_or_create(source.subject_name, folder_id)
                verb = "Created" if handle.created else "Using"
                yield events.progress(f"{verb} tracking sheet {handle.name}")
                job_trace.update_run(self.run_id, subject_name=source.subject_name, tracking_sheet_id=handle.spreadsheet_id)
        except Exception as exc:
            logger.exception("run=%s setup_failed", self.run_id)
            self.status = "failed"
            yield events.error(str(exc))
            return

        coordinator = RunCoordinator(
            provider=provider,
            gamma=gamma,
            budget=self.budget,
            prompt_template=request.custom_prompt,
            slides_per_unit=request.slides_per_unit,
            options=GenerationOptions(
                folder_id=request.gamma_folder_id,
                additional_instructions=request.gamma_additional_instructions,
                theme_id=request.theme_id,
                image_source=request.image_source,
                image_model=request.image_model,
            ),
            tracking=tracking,
            tracking_handle=handle,
            job_recorder=partial(job_trace.upsert_generation_job, self.run_id),
            exporter=export_service.download_export if settings.download_exports else None,
        )
        yield from coordinator.run(source.units)
        self.status = coordinator.status


def iter_recorded_events(session: AutomationSession) -> Iterator[ProgressEvent]:
    """Yield the session's events while logging and persisting each one."""
    try:
        for event in session.events():
            _event_log(session.run_id, event)
            yield event
    finally:
        status = session.status
        if status == "running":
            # Consumer stopped reading (client disconnect) before the run ended.
            session.budget.abort()
            status = "cancelled"
        job_trace.update_run(session.run_id, status=status)
