from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from deck_automation.config import settings


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AutomateRequest(CamelModel):
    drive_file_id: str = Field(min_length=1)
    custom_prompt: str = Field(default_factory=lambda: settings.default_outline_prompt, min_length=1)
    drive_folder_id: str | None = None
    gamma_folder_id: str | None = None
    gamma_additional_instructions: str | None = None
    slides_per_unit: int | None = Field(default=None, ge=1, le=300)
    gemini_api_key: str | None = None
    google_tokens: dict[str, Any] | None = None
    image_source: str | None = None
    image_model: str | None = None
    theme_id: str | None = None
    provider: str | None = None
    max_duration_seconds: float | None = Field(default=None, gt=0)


class RunStartedOut(CamelModel):
    run_id: str


class RunOut(CamelModel):
    id: str
    mode: str
    status: str
    cancel_requested: bool
    subject_name: str | None
    tracking_sheet_id: str | None
    created_at: datetime
    finished_at: datetime | None


class RunEventOut(CamelModel):
    id: int
    run_id: str
    ts: datetime
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    severity: str = "info"


class CancelOut(CamelModel):
    run_id: str
    cancelled: bool


class UpdatePendingRequest(CamelModel):
    spreadsheet_id: str = Field(min_length=1)
    google_tokens: dict[str, Any] | None = None


class UpdatePendingOut(CamelModel):
    success: bool = True
    message: str
    total_checked: int
    updated: int
    updates: list[dict[str, Any]] = Field(default_factory=list)


class SaveKeyRequest(CamelModel):
    api_key: str | None = None
    google_tokens: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _require_something(self):
        if not (self.api_key and self.api_key.strip()) and not self.google_tokens:
            raise ValueError("apiKey or googleTokens is required")
        return self


class SaveKeyOut(CamelModel):
    success: bool = True
    saved: list[str] = Field(default_factory=list)


class GenerationStatusOut(CamelModel):
    generation_id: str
    status: str
    state: str
    gamma_url: str | None = None
    download_url: str | None = None
    error: Any = None
