from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_STORAGE_ROOT = PROJECT_ROOT / "storage"
DEFAULT_DB_PATH = DEFAULT_STORAGE_ROOT / "app.db"

DEFAULT_OUTLINE_PROMPT = (
    "You are preparing lecture slides for {unitName}.\n"
    "Level-1 topics: {level1Topics}\n"
    "Level-2 topics: {level2Topics}\n"
    "Level-3 topics: {level3Topics}\n"
    "Topic outline:\n{topicTree}\n\n"
    "Write an outline of {slideCount} slides. Start every slide with a line "
    "'Slide <number>: <title>' followed by 3-5 bullet lines starting with '- '."
)


class TrackingSheetRef(BaseModel):
    id: str
    name: str = ""


class Settings(BaseSettings):
    app_name: str = "Deck Automation API"
    api_prefix: str = "/api"

    storage_root: Path = DEFAULT_STORAGE_ROOT
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH.as_posix()}"
    redis_url: str = "redis://localhost:6379/0"
    frontend_origin: str = "http://localhost:3000"

    gamma_api_key: str | None = None
    gamma_base_url: str = "https://public-api.gamma.app/v1.0"
    gamma_request_timeout_seconds: int = 60
    gamma_poll_interval_seconds: float = 3.0
    gamma_max_polls: int = 300
    gamma_id_fields: list[str] = Field(default_factory=lambda: ["id", "generation_id", "generationId"])
    gamma_url_fields: list[str] = Field(default_factory=lambda: ["gammaUrl", "output.url", "url", "presentationUrl"])
    gamma_download_fields: list[str] = Field(
        default_factory=lambda: [
            "file_url",
            "download_url",
            "export_url",
            "output.file_url",
            "exportUrl",
            "pptx_url",
        ]
    )
    gamma_card_dimensions: str = "4x3"
    gamma_export_as: str = "pptx"

    default_llm_provider: str = "gemini"
    gemini_api_key: str | None = None
    gemini_models: list[str] = Field(default_factory=lambda: ["gemini-2.5-pro", "gemini-2.5-flash", "gemini-1.5-flash"])
    anthropic_api_key: str | None = None
    anthropic_models: list[str] = Field(default_factory=lambda: ["claude-sonnet-4-20250514", "claude-3-5-haiku-latest"])
    anthropic_max_tokens: int = 8192
    openai_api_key: str | None = None
    openai_models: list[str] = Field(default_factory=lambda: ["gpt-5-mini", "gpt-4o-mini"])
    outline_max_attempts: int = 3
    outline_base_delay_seconds: float = 1.0
    default_slides_per_unit: int = 10
    default_outline_prompt: str = DEFAULT_OUTLINE_PROMPT

    chunk_size: int = 60
    run_max_duration_seconds: float = 270.0
    progress_heartbeat_polls: int = 10

    tracking_sheet_tab: str = "PPT Links"
    tracking_similarity_threshold: float = 0.75
    tracking_sheets: list[TrackingSheetRef] = Field(default_factory=list)
    cron_secret: str | None = None
    sweep_interval_minutes: int = 15

    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_token_uri: str = "https://oauth2.googleapis.com/token"

    download_exports: bool = False
    export_download_timeout_seconds: int = 120

    log_level: str = "INFO"
    suppress_httpx_info_logs: bool = True
    log_preview_chars: int = 180
    persist_run_events: bool = True
    run_events_page_size: int = 400

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()

for folder in [
    settings.storage_root,
    settings.storage_root / "credentials",
    settings.storage_root / "exports",
]:
    folder.mkdir(parents=True, exist_ok=True)
