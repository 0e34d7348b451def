import logging
from time import perf_counter

import openai
from openai import OpenAI

from deck_automation.config import settings
from deck_automation.providers.base import TRANSIENT_STATUS_CODES, BaseTextProvider, preview_text


logger = logging.getLogger("deck_automation.providers")


class OpenAIProvider(BaseTextProvider):
    name = "openai"

    def __init__(self, api_key: str):
        self.client = OpenAI(api_key=api_key)

    @property
    def models(self) -> list[str]:
        return list(settings.openai_models)

    def generate_text(self, *, model: str, prompt: str) -> str:
        started = perf_counter()
        logger.info(
            "openai_request_start model=%s input_chars=%d prompt_preview=%s",
            model,
            len(prompt),
            preview_text(prompt, 220),
        )
        response = self.client.responses.create(model=model, input=prompt)
        text = (response.output_text or "").strip()
        logger.info(
            "openai_request_done model=%s duration_sec=%.2f output_chars=%d output_preview=%s",
            model,
            perf_counter() - started,
            len(text),
            preview_text(text, 220),
        )
        return text

    def is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, openai.RateLimitError):
            return True
        if isinstance(exc, openai.APIStatusError):
            return exc.status_code in TRANSIENT_STATUS_CODES
        return super().is_transient(exc)
