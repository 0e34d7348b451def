from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from googleapiclient.errors import HttpError

from deck_automation.config import settings
from deck_automation.services.google_workspace import (
    GoogleWorkspaceError,
    build_drive_service,
    build_sheets_service,
    credentials_from_tokens,
    list_spreadsheets,
)
from deck_automation.services.sheet_matcher import find_similar_sheet


logger = logging.getLogger("deck_automation.tracking")

HEADER_ROW = ["PPT Name", "Status", "Gamma URL", "Generation ID", "Last Updated"]
EMPTY_CELL = "-"


class TrackingStoreError(RuntimeError):
    pass


class TrackingStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: str | None) -> TrackingStatus | None:
        text = str(value or "").strip()
        for status, label in _STATUS_LABELS.items():
            if text == label:
                return status
        word = text.split()[-1].lower() if text else ""
        try:
            return cls(word)
        except ValueError:
            return None


_STATUS_LABELS = {
    TrackingStatus.PENDING: "⏳ Pending",
    TrackingStatus.COMPLETE: "✅ Complete",
    TrackingStatus.FAILED: "❌ Failed",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TrackingRecord:
    part_name: str
    status: TrackingStatus
    url: str = EMPTY_CELL
    generation_id: str = EMPTY_CELL
    last_updated: str = ""

    def to_row(self) -> list[str]:
        return [
            self.part_name,
            self.status.label,
            self.url or EMPTY_CELL,
            self.generation_id or EMPTY_CELL,
            self.last_updated or utc_timestamp(),
        ]

    @classmethod
    def from_row(cls, row: Sequence[str]) -> TrackingRecord | None:
        cells = [str(cell) for cell in row] + [""] * (5 - len(row))
        status = TrackingStatus.parse(cells[1])
        if status is None:
            return None
        return cls(
            part_name=cells[0],
            status=status,
            url=cells[2],
            generation_id=cells[3],
            last_updated=cells[4],
        )


@dataclass(frozen=True)
class TrackingHandle:
    spreadsheet_id: str
    name: str
    created: bool = False
    similarity: float | None = None


def _spreadsheet_id(handle: TrackingHandle | str) -> str:
    return handle.spreadsheet_id if isinstance(handle, TrackingHandle) else str(handle)


class TrackingStore:
    """Tracking tables kept as Google Sheets, one row per generation job.

    Data rows start at sheet row 2 under the header; ``update`` addresses
    rows by that 1-based sheet position. No deduplication is done here.
    """

    def __init__(self, sheets, drive, *, tab: str | None = None, threshold: float | None = None):
        self.sheets = sheets
        self.drive = drive
        self.tab = tab or settings.tracking_sheet_tab
        self.threshold = settings.tracking_similarity_threshold if threshold is None else threshold

    def _range(self, cells: str) -> str:
        return f"'{self.tab}'!{cells}"

    def find_or_create(self, subject_name: str, folder_id: str) -> TrackingHandle:
        try:
            candidates = list_spreadsheets(self.drive, folder_id)
        except GoogleWorkspaceError as exc:
            raise TrackingStoreError(str(exc)) from exc

        match = find_similar_sheet(subject_name, candidates, threshold=self.threshold)
        if match is not None:
            logger.info(
                "tracking_sheet_matched subject=%s sheet=%s similarity=%.3f",
                subject_name,
                match.name,
                match.similarity,
            )
            return TrackingHandle(match.id, match.name, created=False, similarity=match.similarity)

        title = f"{subject_name}_PPT_Tracker"
        spreadsheet_id = self.create(title, folder_id)
        return TrackingHandle(spreadsheet_id, title, created=True)

    def create(self, title: str, folder_id: str | None = None) -> str:
        body = {"properties": {"title": title}, "sheets": [{"properties": {"title": self.tab}}]}
        try:
            created = self.sheets.spreadsheets().create(body=body, fields="spreadsheetId").execute()
            spreadsheet_id = created["spreadsheetId"]
            if folder_id:
                self.drive.files().update(fileId=spreadsheet_id, addParents=folder_id, fields="id, parents").execute()
            self.sheets.spreadsheets().values().update(
                spreadsheetId=spreadsheet_id,
                range=self._range("A1:E1"),
                valueInputOption="RAW",
                body={"values": [HEADER_ROW]},
            ).execute()
        except HttpError as exc:
            raise TrackingStoreError(f"Failed to create spreadsheet: {exc}") from exc
        logger.info("tracking_sheet_created title=%s spreadsheet_id=%s folder_id=%s", title, spreadsheet_id, folder_id)
        return spreadsheet_id

    def append(self, handle: TrackingHandle | str, records: Sequence[TrackingRecord]) -> None:
        if not records:
            return
        spreadsheet_id = _spreadsheet_id(handle)
        try:
            self.sheets.spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range=self._range("A:E"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [record.to_row() for record in records]},
            ).execute()
        except HttpError as exc:
            raise TrackingStoreError(f"Failed to append rows: {exc}") from exc
        logger.info("tracking_rows_appended spreadsheet_id=%s rows=%d", spreadsheet_id, len(records))

    def update(self, handle: TrackingHandle | str, updates: Sequence[tuple[int, TrackingRecord]]) -> None:
        if not updates:
            return
        data = []
        for position, record in updates:
            if position < 2:
                raise ValueError(f"Row position {position} would overwrite the header row")
            data.append({"range": self._range(f"A{position}:E{position}"), "values": [record.to_row()]})

        spreadsheet_id = _spreadsheet_id(handle)
        try:
            self.sheets.spreadsheets().values().batchUpdate(
                spreadsheetId=spreadsheet_id,
                body={"valueInputOption": "RAW", "data": data},
            ).execute()
        except HttpError as exc:
            raise TrackingStoreError(f"Failed to update sheet rows: {exc}") from exc
        logger.info("tracking_rows_updated spreadsheet_id=%s rows=%d", spreadsheet_id, len(updates))

    def read_records(self, handle: TrackingHandle | str) -> list[tuple[int, TrackingRecord]]:
        spreadsheet_id = _spreadsheet_id(handle)
        try:
            response = (
                self.sheets.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=self._range("A2:E"))
                .execute()
            )
        except HttpError as exc:
            raise TrackingStoreError(f"Failed to get sheet rows: {exc}") from exc

        records: list[tuple[int, TrackingRecord]] = []
        for offset, row in enumerate(response.get("values", [])):
            record = TrackingRecord.from_row(row)
            if record is not None:
                records.append((offset + 2, record))
        return records


def tracking_store_from_tokens(tokens: dict) -> TrackingStore:
    credentials = credentials_from_tokens(tokens)
    return TrackingStore(build_sheets_service(credentials), build_drive_service(credentials))
