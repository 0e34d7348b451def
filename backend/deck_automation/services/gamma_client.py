from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests

from deck_automation.config import settings
from deck_automation.providers.base import preview_text
from deck_automation.services.outline_service import OutlineSlide, outline_to_text


logger = logging.getLogger("deck_automation.gamma")

DONE_STATUSES = {"done", "complete", "completed"}
FAILED_STATUSES = {"error", "failed"}


class GammaRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class GammaJobFailedError(RuntimeError):
    def __init__(self, message: str, *, generation_id: str, detail: Any = None):
        super().__init__(message)
        self.generation_id = generation_id
        self.detail = detail


class JobState(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING_TIMEOUT = "pending_timeout"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in {JobState.COMPLETED, JobState.FAILED, JobState.ABORTED}


class StopReason(str, Enum):
    CANCELLED = "cancelled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    MAX_POLLS_REACHED = "max_polls_reached"


class RunBudget:
    """Wall-clock allowance and cancellation flag for one orchestration run.

    ``abort()`` latches the flag; it is never cleared. ``abort_signal`` lets
    a caller in another process request cancellation; it is read on every
    check and latches the flag the first time it reports true.
    """

    def __init__(
        self,
        max_duration: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        abort_signal: Callable[[], bool] | None = None,
    ):
        self.max_duration = float(max_duration)
        self.clock = clock
        self.started_at = clock()
        self._aborted = False
        self._abort_signal = abort_signal

    @property
    def aborted(self) -> bool:
        if not self._aborted and self._abort_signal is not None and self._abort_signal():
            self._aborted = True
        return self._aborted

    def abort(self) -> None:
        self._aborted = True

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def exceeded(self) -> bool:
        return self.elapsed() > self.max_duration


@dataclass
class StatusSnapshot:
    generation_id: str
    status: str
    state: JobState
    result_url: str | None = None
    download_url: str | None = None
    error: Any = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class JobOutcome:
    generation_id: str
    state: JobState
    result_url: str | None = None
    download_url: str | None = None
    error: Any = None
    polls: int = 0
    poll_errors: int = 0
    stop_reason: StopReason | None = None


@dataclass(frozen=True)
class PollTick:
    attempt: int
    elapsed: float


@dataclass
class GenerationJob:
    unit_name: str
    part_name: str
    id: str | None = None
    state: JobState = JobState.CREATED
    result_url: str | None = None
    download_url: str | None = None
    error: Any = None

    def mark_submitted(self, generation_id: str) -> None:
        self.id = generation_id
        self.state = JobState.SUBMITTED

    def mark_polling(self) -> None:
        self.state = JobState.POLLING

    def apply(self, outcome: JobOutcome) -> None:
        if self.state.is_terminal:
            raise ValueError(f"Generation job {self.id} is already {self.state.value}")
        self.state = outcome.state
        self.result_url = outcome.result_url
        self.download_url = outcome.download_url
        self.error = outcome.error


@dataclass
class GenerationOptions:
    folder_id: str | None = None
    additional_instructions: str | None = None
    theme_id: str | None = None
    image_source: str | None = None
    image_model: str | None = None


def lookup_field(payload: dict[str, Any], paths: Sequence[str]) -> Any:
    """Return the first non-empty value among dotted ``paths``."""
    for path in paths:
        value: Any = payload
        for key in path.split("."):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value not in (None, ""):
            return value
    return None


def build_generation_payload(chunk: Sequence[OutlineSlide], options: GenerationOptions | None = None) -> dict:
    options = options or GenerationOptions()
    image_options: dict[str, Any] = {"source": options.image_source or "noImages"}
    if options.image_source == "aiGenerated" and options.image_model:
        image_options["model"] = options.image_model

    payload: dict[str, Any] = {
        "inputText": outline_to_text(chunk),
        "textMode": "preserve",
        "format": "presentation",
        "numCards": len(chunk),
        "cardSplit": "inputTextBreaks",
        "exportAs": settings.gamma_export_as,
        "imageOptions": image_options,
        "cardOptions": {"dimensions": settings.gamma_card_dimensions},
    }
    if options.folder_id:
        payload["folderIds"] = [options.folder_id]
    if options.additional_instructions:
        payload["additionalInstructions"] = options.additional_instructions
    if options.theme_id:
        payload["themeId"] = options.theme_id
    return payload


class GammaClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        id_fields: Sequence[str] | None = None,
        url_fields: Sequence[str] | None = None,
        download_fields: Sequence[str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        key = (api_key or settings.gamma_api_key or "").strip()
        if not key:
            raise ValueError("Gamma API key required")
        self.base_url = (base_url or settings.gamma_base_url).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"X-API-KEY": key})
        self.timeout = settings.gamma_request_timeout_seconds
        self.poll_interval = settings.gamma_poll_interval_seconds if poll_interval is None else poll_interval
        self.max_polls = settings.gamma_max_polls if max_polls is None else max_polls
        self.id_fields = list(id_fields or settings.gamma_id_fields)
        self.url_fields = list(url_fields or settings.gamma_url_fields)
        self.download_fields = list(download_fields or settings.gamma_download_fields)
        self.sleep = sleep

    def submit(self, chunk: Sequence[OutlineSlide], options: GenerationOptions | None = None) -> str:
        payload = build_generation_payload(chunk, options)
        logger.info(
            "gamma_submit cards=%d input_chars=%d input_preview=%s",
            payload["numCards"],
            len(payload["inputText"]),
            preview_text(payload["inputText"]),
        )
        response = self.session.post(f"{self.base_url}/generations", json=payload, timeout=self.timeout)
        if not response.ok:
            raise GammaRequestError(
                f"Gamma API failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                detail=response.text,
            )

        data = response.json()
        generation_id = lookup_field(data if isinstance(data, dict) else {}, self.id_fields)
        if not generation_id:
            raise GammaRequestError(f"No generation ID found in Gamma response: {json.dumps(data)}", detail=data)
        logger.info("gamma_generation_started generation_id=%s", generation_id)
        return str(generation_id)

    def fetch_status(self, generation_id: str) -> requests.Response:
        return self.session.get(f"{self.base_url}/generations/{generation_id}", timeout=self.timeout)

    def interpret_status(self, generation_id: str, data: dict[str, Any]) -> StatusSnapshot:
        status = str(data.get("status") or "unknown").lower()
        if status in DONE_STATUSES:
            result_url = lookup_field(data, self.url_fields)
            download_url = lookup_field(data, self.download_fields)
            if not download_url:
                logger.warning("gamma_no_download_url generation_id=%s", generation_id)
            return StatusSnapshot(
                generation_id=generation_id,
                status=status,
                state=JobState.COMPLETED,
                result_url=str(result_url) if result_url else None,
                download_url=str(download_url) if download_url else None,
                payload=data,
            )
        if status in FAILED_STATUSES:
            return StatusSnapshot(
                generation_id=generation_id,
                status=status,
                state=JobState.FAILED,
                error=data.get("error") or data,
                payload=data,
            )
        return StatusSnapshot(generation_id=generation_id, status=status, state=JobState.POLLING, payload=data)

    def check_status(self, generation_id: str) -> StatusSnapshot:
        """Single status check; HTTP and network failures propagate."""
        response = self.fetch_status(generation_id)
        if not response.ok:
            raise GammaRequestError(
                f"Status check failed with HTTP {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GammaRequestError("Malformed status response", detail=response.text) from exc
        if not isinstance(data, dict):
            raise GammaRequestError("Malformed status response", detail=data)
        return self.interpret_status(generation_id, data)

    def list_themes(self) -> dict[str, Any]:
        response = self.session.get(f"{self.base_url}/themes", timeout=self.timeout)
        if not response.ok:
            raise GammaRequestError(
                "Failed to fetch themes from Gamma API",
                status_code=response.status_code,
                detail=response.text,
            )
        return response.json()

    def poll(self, generation_id: str, budget: RunBudget) -> JobOutcome:
        ticks = self.iter_poll(generation_id, budget)
        while True:
            try:
                next(ticks)
            except StopIteration as stop:
                return stop.value

    def iter_poll(self, generation_id: str, budget: RunBudget) -> Generator[PollTick, None, JobOutcome]:
        """Poll one generation until it resolves or a guard stops the loop.

        Before every wait, cancellation yields ``ABORTED`` and an exhausted
        run budget yields ``PENDING_TIMEOUT``; running out of polls also
        yields ``PENDING_TIMEOUT``. Failed status checks are counted and
        skipped. A completed job without a presentation URL raises
        ``GammaJobFailedError``. A ``PollTick`` is yielded after every wait
        and the outcome is the generator's return value.
        """
        poll_errors = 0
        for attempt in range(self.max_polls):
            if budget.aborted:
                logger.info("gamma_poll_stop generation_id=%s reason=cancelled polls=%d", generation_id, attempt)
                return JobOutcome(
                    generation_id,
                    JobState.ABORTED,
                    polls=attempt,
                    poll_errors=poll_errors,
                    stop_reason=StopReason.CANCELLED,
                )
            if budget.exceeded():
                logger.info(
                    "gamma_poll_stop generation_id=%s reason=budget_exhausted polls=%d elapsed_sec=%.1f",
                    generation_id,
                    attempt,
                    budget.elapsed(),
                )
                return JobOutcome(
                    generation_id,
                    JobState.PENDING_TIMEOUT,
                    polls=attempt,
                    poll_errors=poll_errors,
                    stop_reason=StopReason.BUDGET_EXHAUSTED,
                )

            self.sleep(self.poll_interval)
            yield PollTick(attempt, budget.elapsed())

            try:
                response = self.fetch_status(generation_id)
            except requests.RequestException as exc:
                poll_errors += 1
                logger.warning(
                    "gamma_poll_network_error generation_id=%s poll=%d/%d reason=%s",
                    generation_id,
                    attempt + 1,
                    self.max_polls,
                    exc,
                )
                continue
            if not response.ok:
                poll_errors += 1
                logger.warning(
                    "gamma_poll_http_error generation_id=%s poll=%d/%d status_code=%d",
                    generation_id,
                    attempt + 1,
                    self.max_polls,
                    response.status_code,
                )
                continue

            try:
                data = response.json()
            except ValueError:
                poll_errors += 1
                logger.warning("gamma_poll_invalid_json generation_id=%s poll=%d", generation_id, attempt + 1)
                continue

            snapshot = self.interpret_status(generation_id, data if isinstance(data, dict) else {})
            if attempt % 5 == 0 or snapshot.state is not JobState.POLLING:
                logger.info(
                    "gamma_poll generation_id=%s poll=%d/%d status=%s",
                    generation_id,
                    attempt + 1,
                    self.max_polls,
                    snapshot.status,
                )

            if snapshot.state is JobState.COMPLETED:
                if not snapshot.result_url:
                    raise GammaJobFailedError(
                        "Generation completed but no URL found",
                        generation_id=generation_id,
                        detail=data,
                    )
                return JobOutcome(
                    generation_id,
                    JobState.COMPLETED,
                    result_url=snapshot.result_url,
                    download_url=snapshot.download_url,
                    polls=attempt + 1,
                    poll_errors=poll_errors,
                )
            if snapshot.state is JobState.FAILED:
                return JobOutcome(
                    generation_id,
                    JobState.FAILED,
                    error=snapshot.error,
                    polls=attempt + 1,
                    poll_errors=poll_errors,
                )

        logger.warning(
            "gamma_poll_stop generation_id=%s reason=max_polls_reached polls=%d poll_errors=%d",
            generation_id,
            self.max_polls,
            poll_errors,
        )
        return JobOutcome(
            generation_id,
            JobState.PENDING_TIMEOUT,
            polls=self.max_polls,
            poll_errors=poll_errors,
            stop_reason=StopReason.MAX_POLLS_REACHED,
        )
