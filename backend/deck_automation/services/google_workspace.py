from __future__ import annotations

import logging
import re
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from deck_automation.config import settings


logger = logging.getLogger("deck_automation.tracking")

SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/spreadsheets",
]
GOOGLE_SHEET_MIME = "application/vnd.google-apps.spreadsheet"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_ID_PATTERNS = (
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"/folders/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]+)"),
)


class GoogleWorkspaceError(RuntimeError):
    pass


def extract_drive_id(url_or_id: str | None) -> str:
    """Pull a file or folder id out of a Drive/Docs URL; plain ids pass through."""
    trimmed = str(url_or_id or "").strip()
    if not trimmed:
        return ""
    if "drive.google.com" not in trimmed and "docs.google.com" not in trimmed and "http" not in trimmed:
        return trimmed
    for pattern in _ID_PATTERNS:
        match = pattern.search(trimmed)
        if match:
            return match.group(1)
    return trimmed


def credentials_from_tokens(tokens: dict[str, Any]) -> Credentials:
    access_token = tokens.get("access_token") or tokens.get("token")
    refresh_token = tokens.get("refresh_token")
    if not access_token and not refresh_token:
        raise ValueError("Google tokens must include an access_token or refresh_token")
    return Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=settings.google_token_uri,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=SCOPES,
    )


def build_drive_service(credentials: Credentials):
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def build_sheets_service(credentials: Credentials):
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


def fetch_drive_file(drive, file_id: str) -> bytes:
    """Download a Drive file; native Google Sheets are exported as xlsx."""
    try:
        metadata = drive.files().get(fileId=file_id, fields="mimeType, name").execute()
        mime_type = metadata.get("mimeType")
        logger.info("drive_fetch file_id=%s name=%s mime_type=%s", file_id, metadata.get("name"), mime_type)
        if mime_type == GOOGLE_SHEET_MIME:
            return drive.files().export_media(fileId=file_id, mimeType=XLSX_MIME).execute()
        return drive.files().get_media(fileId=file_id).execute()
    except HttpError as exc:
        raise GoogleWorkspaceError(f"Failed to fetch file: {exc}") from exc


def list_spreadsheets(drive, folder_id: str) -> list[dict[str, str]]:
    query = f"'{folder_id}' in parents and mimeType='{GOOGLE_SHEET_MIME}' and trashed=false"
    files: list[dict[str, str]] = []
    page_token = None
    try:
        while True:
            response = (
                drive.files()
                .list(q=query, fields="nextPageToken, files(id, name)", pageSize=100, pageToken=page_token)
                .execute()
            )
            files.extend({"id": row["id"], "name": row.get("name", "")} for row in response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return files
    except HttpError as exc:
        raise GoogleWorkspaceError(f"Failed to list files: {exc}") from exc
