import json
import re
from pathlib import Path
from uuid import uuid4

from deck_automation.config import settings

_UNSAFE_STEM = re.compile(r"[^A-Za-z0-9._-]+")


def make_file_path(kind: str, extension: str, stem: str | None = None) -> Path:
    folder = settings.storage_root / kind
    folder.mkdir(parents=True, exist_ok=True)
    safe_stem = _UNSAFE_STEM.sub("_", stem).strip("_") if stem else ""
    return folder / f"{safe_stem or uuid4()}.{extension.lstrip('.')}"


def write_json(path: Path, payload: dict | list) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def read_json(path: Path) -> dict | list:
    return json.loads(path.read_text(encoding="utf-8"))
