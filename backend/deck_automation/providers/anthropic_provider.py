import logging
from time import perf_counter

import anthropic
from anthropic import Anthropic

from deck_automation.config import settings
from deck_automation.providers.base import TRANSIENT_STATUS_CODES, BaseTextProvider, preview_text


logger = logging.getLogger("deck_automation.providers")


class AnthropicProvider(BaseTextProvider):
    name = "anthropic"

    def __init__(self, api_key: str):
        self.client = Anthropic(api_key=api_key)

    @property
    def models(self) -> list[str]:
        return list(settings.anthropic_models)

    def generate_text(self, *, model: str, prompt: str) -> str:
        started = perf_counter()
        logger.info(
            "anthropic_request_start model=%s input_chars=%d prompt_preview=%s",
            model,
            len(prompt),
            preview_text(prompt, 220),
        )
        response = self.client.messages.create(
            model=model,
            max_tokens=settings.anthropic_max_tokens,
            temperature=0.35,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(block.text for block in response.content if hasattr(block, "text")).strip()
        logger.info(
            "anthropic_request_done model=%s duration_sec=%.2f output_chars=%d output_preview=%s",
            model,
            perf_counter() - started,
            len(text),
            preview_text(text, 220),
        )
        return text

    def is_transient(self, exc: BaseException) -> bool:
        if isinstance(exc, anthropic.RateLimitError):
            return True
        if isinstance(exc, anthropic.APIStatusError):
            return exc.status_code in TRANSIENT_STATUS_CODES
        return super().is_transient(exc)
