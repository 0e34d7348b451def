from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

import requests

from deck_automation.services.gamma_client import GammaClient, GammaRequestError, JobState
from deck_automation.services.tracking_store import (
    EMPTY_CELL,
    TrackingRecord,
    TrackingStatus,
    TrackingStore,
    TrackingStoreError,
    utc_timestamp,
)


logger = logging.getLogger("deck_automation.tracking")


@dataclass
class ReconcileResult:
    spreadsheet_id: str
    sheet_name: str = ""
    checked: int = 0
    updated: int = 0
    updates: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "spreadsheetId": self.spreadsheet_id,
            "sheetName": self.sheet_name,
            "checked": self.checked,
            "updated": self.updated,
            "updates": self.updates,
            "error": self.error,
        }


@dataclass
class SweepResult:
    total_checked: int = 0
    total_updated: int = 0
    results: list[ReconcileResult] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalChecked": self.total_checked,
            "totalUpdated": self.total_updated,
            "results": [row.as_dict() for row in self.results],
        }


def _has_generation_id(record: TrackingRecord) -> bool:
    return bool(record.generation_id) and record.generation_id != EMPTY_CELL


def reconcile_sheet(
    store: TrackingStore,
    client: GammaClient,
    spreadsheet_id: str,
    *,
    sheet_name: str = "",
) -> ReconcileResult:
    """Re-check every pending row once and write back the ones that resolved."""
    result = ReconcileResult(spreadsheet_id=spreadsheet_id, sheet_name=sheet_name)
    resolved: list[tuple[int, TrackingRecord]] = []

    for position, record in store.read_records(spreadsheet_id):
        if record.status is not TrackingStatus.PENDING or not _has_generation_id(record):
            continue
        result.checked += 1
        try:
            snapshot = client.check_status(record.generation_id)
        except (GammaRequestError, requests.RequestException) as exc:
            logger.warning(
                "reconcile_status_error spreadsheet_id=%s generation_id=%s reason=%s",
                spreadsheet_id,
                record.generation_id,
                exc,
            )
            continue

        if snapshot.state is JobState.COMPLETED:
            if not snapshot.result_url:
                logger.warning("reconcile_complete_without_url generation_id=%s", record.generation_id)
                continue
            updated = replace(
                record,
                status=TrackingStatus.COMPLETE,
                url=snapshot.result_url,
                last_updated=utc_timestamp(),
            )
        elif snapshot.state is JobState.FAILED:
            updated = replace(record, status=TrackingStatus.FAILED, url=EMPTY_CELL, last_updated=utc_timestamp())
        else:
            logger.info(
                "reconcile_still_pending generation_id=%s status=%s",
                record.generation_id,
                snapshot.status,
            )
            continue

        resolved.append((position, updated))
        result.updates.append({"name": updated.part_name, "status": updated.status.label, "url": updated.url})
        logger.info(
            "reconcile_resolved spreadsheet_id=%s row=%d generation_id=%s status=%s",
            spreadsheet_id,
            position,
            record.generation_id,
            updated.status.value,
        )

    store.update(spreadsheet_id, resolved)
    result.updated = len(resolved)
    return result


def sweep_tracking_sheets(
    store: TrackingStore,
    client: GammaClient,
    sheets: Iterable[Any],
) -> SweepResult:
    """Reconcile a list of ``{id, name}`` sheet references; one bad sheet does not stop the rest."""
    sweep = SweepResult()
    for sheet in sheets:
        sheet_id = sheet["id"] if isinstance(sheet, dict) else sheet.id
        sheet_name = (sheet.get("name") if isinstance(sheet, dict) else sheet.name) or ""
        logger.info("sweep_sheet_start spreadsheet_id=%s name=%s", sheet_id, sheet_name)
        try:
            result = reconcile_sheet(store, client, sheet_id, sheet_name=sheet_name)
        except TrackingStoreError as exc:
            logger.error("sweep_sheet_error spreadsheet_id=%s reason=%s", sheet_id, exc)
            result = ReconcileResult(spreadsheet_id=sheet_id, sheet_name=sheet_name, error=str(exc))
        sweep.results.append(result)
        sweep.total_checked += result.checked
        sweep.total_updated += result.updated

    logger.info("sweep_done checked=%d updated=%d", sweep.total_checked, sweep.total_updated)
    return sweep
