from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import requests
from pptx import Presentation

from deck_automation.config import settings
from deck_automation.storage import make_file_path


logger = logging.getLogger("deck_automation.jobs")


def count_slides(path: Path) -> int:
    return len(Presentation(str(path)).slides)


def download_export(url: str, part_name: str) -> dict[str, Any]:
    """Download an exported deck; failures are reported, never raised."""
    output_path = make_file_path("exports", "pptx", stem=part_name)
    try:
        response = requests.get(url, timeout=settings.export_download_timeout_seconds)
        response.raise_for_status()
        output_path.write_bytes(response.content)
        slide_count = count_slides(output_path)
    except Exception as exc:
        logger.warning("export_download_failed part=%s url=%s reason=%s", part_name, url, exc)
        return {"exportError": str(exc)}
    logger.info("export_downloaded part=%s path=%s slides=%d", part_name, output_path, slide_count)
    return {"localPath": str(output_path), "slideCount": slide_count}
