from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

SEVERITY_BY_TYPE = {"warning": "warning", "unit_error": "error", "error": "error"}


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> str:
        return SEVERITY_BY_TYPE.get(self.type, "info")

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.fields}


def progress(message: str, **extra: Any) -> ProgressEvent:
    return ProgressEvent("progress", {"message": message, **extra})


def warning(message: str) -> ProgressEvent:
    return ProgressEvent("warning", {"message": message})


def complete(message: str) -> ProgressEvent:
    return ProgressEvent("complete", {"message": message})


def error(message: str) -> ProgressEvent:
    return ProgressEvent("error", {"message": message})


def part_complete(unit: str, part: dict[str, Any]) -> ProgressEvent:
    return ProgressEvent("part_complete", {"unit": unit, "part": part})


def part_pending(unit: str, part: dict[str, Any]) -> ProgressEvent:
    return ProgressEvent("part_pending", {"unit": unit, "part": part})


def unit_complete(unit: str, status: str, parts: list[dict[str, Any]]) -> ProgressEvent:
    return ProgressEvent("unit_complete", {"unit": unit, "status": status, "parts": parts})


def unit_error(unit: str, message: str) -> ProgressEvent:
    return ProgressEvent("unit_error", {"unit": unit, "status": "error", "error": message})


def sse_packet(event: ProgressEvent) -> str:
    payload = json.dumps(event.as_dict(), ensure_ascii=False, default=str)
    return f"data: {payload}\n\n"
