import re

from deck_automation.config import settings

TRANSIENT_STATUS_CODES = {429, 503, 529}
_TRANSIENT_MARKERS = re.compile(r"\b(?:429|503|529)\b|overloaded|rate[ _]limit|resource_exhausted|unavailable")


def preview_text(text: str | None, limit: int | None = None) -> str:
    raw = str(text or "").replace("\r", " ").replace("\n", " ").strip()
    cap = int(limit or settings.log_preview_chars)
    if len(raw) <= cap:
        return raw
    return raw[:cap].rstrip() + " ..."


def status_code_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


class BaseTextProvider:
    """Text-generation backend addressed by model name.

    Subclasses only know how to send one prompt to one model and how to
    recognise their client library's overload / rate-limit errors. Retry and
    model fallback live in the outline service.
    """

    name = "base"

    @property
    def models(self) -> list[str]:
        return []

    def generate_text(self, *, model: str, prompt: str) -> str:
        raise NotImplementedError

    def is_transient(self, exc: BaseException) -> bool:
        code = status_code_of(exc)
        if code in TRANSIENT_STATUS_CODES:
            return True
        return bool(_TRANSIENT_MARKERS.search(str(exc).lower()))
