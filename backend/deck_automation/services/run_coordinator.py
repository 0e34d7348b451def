from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Generator, Iterator, Sequence
from typing import Any

from deck_automation.config import settings
from deck_automation.providers.base import BaseTextProvider
from deck_automation.services import progress_events as events
from deck_automation.services.gamma_client import (
    GammaClient,
    GammaJobFailedError,
    GenerationJob,
    GenerationOptions,
    JobOutcome,
    JobState,
    RunBudget,
)
from deck_automation.services.outline_service import (
    OutlineGenerationError,
    OutlineGeneratorConfig,
    OutlineSlide,
    chunk_outline,
    generate_outline,
)
from deck_automation.services.progress_events import ProgressEvent
from deck_automation.services.topic_source import Unit
from deck_automation.services.tracking_store import (
    TrackingHandle,
    TrackingRecord,
    TrackingStatus,
    TrackingStore,
    TrackingStoreError,
    utc_timestamp,
)


logger = logging.getLogger("deck_automation.jobs")

_UNIT_PREFIX = re.compile(r"UNIT\s*[–—-]?\s*(\d+)\s*", re.IGNORECASE)
_NON_NAME_CHARS = re.compile(r"[^A-Za-z0-9-]")

RUN_COMPLETED = "completed"
RUN_CANCELLED = "cancelled"
RUN_BUDGET_EXHAUSTED = "budget_exhausted"


def part_name(unit_name: str, part_number: int) -> str:
    """``"UNIT – 1 INTRODUCTION"``, part 1 -> ``"Unit-1_Introduction_Part-1"``."""
    match = _UNIT_PREFIX.search(unit_name)
    unit_number = match.group(1) if match else "0"
    remainder = _UNIT_PREFIX.sub("", unit_name, count=1).strip()
    words = [_NON_NAME_CHARS.sub("", word) for word in remainder.split()]
    clean_name = "-".join(word.capitalize() for word in words if word)
    return f"Unit-{unit_number}_{clean_name}_Part-{part_number}"


class _StopRun(Exception):
    def __init__(self, status: str):
        super().__init__(status)
        self.status = status


class RunCoordinator:
    """Drives units and their chunks one at a time and yields progress events.

    A fatal error inside one unit becomes a single ``unit_error`` event and
    the next unit still runs. The run budget is checked before every unit,
    before every chunk and inside every poll loop; cancellation is read at
    the same points. After ``run`` is exhausted ``status`` tells how it ended.
    """

    def __init__(
        self,
        *,
        provider: BaseTextProvider,
        gamma: GammaClient,
        budget: RunBudget,
        prompt_template: str,
        slides_per_unit: int | None = None,
        chunk_size: int | None = None,
        options: GenerationOptions | None = None,
        outline_config: OutlineGeneratorConfig | None = None,
        tracking: TrackingStore | None = None,
        tracking_handle: TrackingHandle | None = None,
        job_recorder: Callable[[GenerationJob], None] | None = None,
        exporter: Callable[[str, str], dict[str, Any]] | None = None,
        heartbeat_polls: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.gamma = gamma
        self.budget = budget
        self.prompt_template = prompt_template
        self.slides_per_unit = slides_per_unit or settings.default_slides_per_unit
        self.chunk_size = chunk_size or settings.chunk_size
        if self.chunk_size <= 0:
            raise ValueError("chunk size must be a positive integer")
        self.options = options or GenerationOptions()
        self.outline_config = outline_config
        self.tracking = tracking
        self.tracking_handle = tracking_handle
        self.job_recorder = job_recorder
        self.exporter = exporter
        self.heartbeat_polls = heartbeat_polls or settings.progress_heartbeat_polls
        self.sleep = sleep
        self.status = "running"

    def run(self, units: Sequence[Unit]) -> Iterator[ProgressEvent]:
        total = len(units)
        for index, unit in enumerate(units):
            if self.budget.aborted:
                self.status = RUN_CANCELLED
                yield events.warning(f"Automation cancelled before {unit.name}; {total - index} unit(s) not started.")
                return
            if self.budget.exceeded():
                self.status = RUN_BUDGET_EXHAUSTED
                yield events.warning(
                    f"Time budget of {self.budget.max_duration:.0f}s exhausted; "
                    f"{total - index} unit(s) not started."
                )
                break

            yield events.progress(f"Processing {unit.name} ({index + 1}/{total})...")
            try:
                yield from self._process_unit(unit)
            except _StopRun as stop:
                self.status = stop.status
                if stop.status == RUN_CANCELLED:
                    return
                break
            except Exception as exc:
                logger.exception("unit_error unit=%s", unit.name)
                yield events.unit_error(unit.name, str(exc))

        if self.status == "running":
            self.status = RUN_COMPLETED
            yield events.complete("Automation completed!")
        else:
            yield events.complete("Automation stopped early: time budget exhausted. Pending parts are tracked for later checks.")

    def _generate_outline(self, unit: Unit) -> list[OutlineSlide]:
        slides = generate_outline(
            self.provider,
            unit,
            slide_count=self.slides_per_unit,
            prompt_template=self.prompt_template,
            config=self.outline_config,
            sleep=self.sleep,
        )
        if not slides:
            raise OutlineGenerationError(f"No slides could be parsed from the outline for {unit.name}")
        return slides

    def _process_unit(self, unit: Unit) -> Generator[ProgressEvent, None, None]:
        slides = self._generate_outline(unit)
        chunks = chunk_outline(slides, self.chunk_size)
        logger.info("unit_outline unit=%s slides=%d chunks=%d", unit.name, len(slides), len(chunks))
        yield events.progress(f"Generated {len(slides)} slides for {unit.name} in {len(chunks)} part(s)")

        parts: list[dict[str, Any]] = []
        pending = False
        for chunk_index, chunk in enumerate(chunks):
            if self.budget.aborted:
                yield events.warning(f"Automation cancelled during {unit.name}.")
                raise _StopRun(RUN_CANCELLED)
            if self.budget.exceeded():
                yield events.warning(
                    f"Time budget exhausted; skipped {len(chunks) - chunk_index} remaining part(s) of {unit.name}."
                )
                yield events.unit_complete(unit.name, "partial", parts)
                raise _StopRun(RUN_BUDGET_EXHAUSTED)

            job = GenerationJob(unit_name=unit.name, part_name=part_name(unit.name, chunk_index + 1))
            yield events.progress(f"Generating {job.part_name}...")
            job.mark_submitted(self.gamma.submit(chunk, self.options))
            job.mark_polling()
            self._record(job)

            try:
                outcome = yield from self._poll(job)
            except GammaJobFailedError as exc:
                job.apply(JobOutcome(job.id, JobState.FAILED, error=str(exc)))
                self._record(job)
                yield from self._track(job, TrackingStatus.FAILED)
                raise

            job.apply(outcome)
            self._record(job)

            if outcome.state is JobState.COMPLETED:
                part = {
                    "partNumber": chunk_index + 1,
                    "gammaUrl": job.result_url,
                    "downloadUrl": job.download_url,
                    "partName": job.part_name,
                }
                if self.exporter is not None and job.download_url:
                    part.update(self.exporter(job.download_url, job.part_name))
                yield from self._track(job, TrackingStatus.COMPLETE)
                parts.append(part)
                yield events.part_complete(unit.name, part)
            elif outcome.state is JobState.PENDING_TIMEOUT:
                pending = True
                yield from self._track(job, TrackingStatus.PENDING)
                part = {
                    "generationId": job.id,
                    "partName": job.part_name,
                    "status": "pending",
                    "message": "Still generating; tracked for a later status check.",
                }
                parts.append(part)
                yield events.part_pending(unit.name, part)
            elif outcome.state is JobState.FAILED:
                yield from self._track(job, TrackingStatus.FAILED)
                raise GammaJobFailedError(
                    f"Gamma generation failed: {json.dumps(outcome.error, default=str)}",
                    generation_id=job.id,
                    detail=outcome.error,
                )
            else:
                yield from self._track(job, TrackingStatus.PENDING)
                yield events.warning(f"Automation cancelled while {job.part_name} was generating ({job.id}).")
                raise _StopRun(RUN_CANCELLED)

        yield events.unit_complete(unit.name, "pending" if pending else "completed", parts)

    def _poll(self, job: GenerationJob) -> Generator[ProgressEvent, None, JobOutcome]:
        submitted_at = self.budget.elapsed()
        ticks = self.gamma.iter_poll(job.id, self.budget)
        while True:
            try:
                tick = next(ticks)
            except StopIteration as stop:
                return stop.value
            if tick.attempt > 0 and tick.attempt % self.heartbeat_polls == 0:
                minutes = int((tick.elapsed - submitted_at) // 60)
                yield events.progress(f"Still generating {job.part_name}... ({minutes} min elapsed)")

    def _record(self, job: GenerationJob) -> None:
        if self.job_recorder is not None:
            self.job_recorder(job)

    def _track(self, job: GenerationJob, status: TrackingStatus) -> Iterator[ProgressEvent]:
        """Append the job's tracking row; a failed write is reported and the run goes on."""
        if self.tracking is None or self.tracking_handle is None:
            return
        record = TrackingRecord(
            part_name=job.part_name,
            status=status,
            url=job.result_url or "-",
            generation_id=job.id or "-",
            last_updated=utc_timestamp(),
        )
        try:
            self.tracking.append(self.tracking_handle, [record])
        except TrackingStoreError as exc:
            logger.error(
                "tracking_append_failed part=%s generation_id=%s status=%s reason=%s",
                job.part_name,
                job.id,
                status.value,
                exc,
            )
            yield events.warning(
                f"Could not record {job.part_name} ({job.id}, {status.value}) in the tracking sheet: {exc}"
            )
