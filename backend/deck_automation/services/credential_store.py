from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from deck_automation.config import settings
from deck_automation.storage import read_json, write_json


logger = logging.getLogger("deck_automation.jobs")


def _credentials_path() -> Path:
    return settings.storage_root / "credentials" / "credentials.json"


def load_credentials() -> dict[str, Any]:
    path = _credentials_path()
    if not path.exists():
        return {}
    payload = read_json(path)
    return payload if isinstance(payload, dict) else {}


def save_credentials(*, gamma_api_key: str | None = None, google_tokens: dict[str, Any] | None = None) -> list[str]:
    stored = load_credentials()
    saved: list[str] = []
    if gamma_api_key:
        stored["gamma_api_key"] = gamma_api_key.strip()
        saved.append("gamma_api_key")
    if google_tokens:
        stored["google_tokens"] = dict(google_tokens)
        saved.append("google_tokens")
    if saved:
        write_json(_credentials_path(), stored)
        logger.info("credentials_saved keys=%s", ",".join(saved))
    return saved


def gamma_api_key() -> str | None:
    return settings.gamma_api_key or load_credentials().get("gamma_api_key")


def google_tokens() -> dict[str, Any] | None:
    tokens = load_credentials().get("google_tokens")
    return tokens if isinstance(tokens, dict) and tokens else None
