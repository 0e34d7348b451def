from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from deck_automation.config import settings
from deck_automation.providers.base import BaseTextProvider, preview_text
from deck_automation.services.topic_source import Unit


logger = logging.getLogger("deck_automation.providers")

_SEPARATOR_LINE = re.compile(r"^-{2,}$")
_EMPHASIS_EDGES = re.compile(r"^[*_#\s]+|[*_\s]+$")
_SLIDE_HEADING = re.compile(r"^Slide\s+(\d+)[\s:–—-]+(.+)$", re.IGNORECASE)
_BULLET_PREFIX = re.compile(r"^[-•*]\s*")
_BOLD_KEYWORD = re.compile(r"^\*\*[^*]+\*\*\s*:")


@dataclass
class OutlineSlide:
    index: int
    title: str
    bullets: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OutlineGeneratorConfig:
    models: tuple[str, ...]
    max_attempts: int = 3
    base_delay_seconds: float = 1.0

    @classmethod
    def for_provider(cls, provider: BaseTextProvider) -> OutlineGeneratorConfig:
        return cls(
            models=tuple(provider.models),
            max_attempts=settings.outline_max_attempts,
            base_delay_seconds=settings.outline_base_delay_seconds,
        )


class OutlineGenerationError(RuntimeError):
    def __init__(self, message: str, last_error: BaseException | None = None):
        super().__init__(message)
        self.last_error = last_error


def build_outline_prompt(template: str, unit: Unit, slide_count: int) -> str:
    return (
        str(template)
        .replace("{unitName}", unit.name)
        .replace("{level1Topics}", ", ".join(unit.level1_topics))
        .replace("{level2Topics}", ", ".join(unit.level2_topics))
        .replace("{level3Topics}", ", ".join(unit.level3_topics))
        .replace("{topicTree}", unit.render_tree())
        .replace("{slideCount}", str(slide_count))
    )


def parse_outline_text(text: str) -> list[OutlineSlide]:
    """Parse loosely formatted backend output into slides.

    Headings look like ``Slide <n>: <title>`` with optional markdown emphasis
    and ``:``/``-``/``–`` separators. Under an open heading, ``-``/``•``
    bullets are unwrapped, ``**Keyword**: text`` lines are kept verbatim and
    any other non-empty line is taken as a bullet. A slide is emitted once the
    next heading or the end of the text closes it; a heading that never
    collects a bullet is dropped.
    """
    slides: list[OutlineSlide] = []
    current: OutlineSlide | None = None

    for line in str(text or "").splitlines():
        trimmed = line.strip()
        if not trimmed or _SEPARATOR_LINE.match(trimmed):
            continue

        heading = _SLIDE_HEADING.match(_EMPHASIS_EDGES.sub("", trimmed))
        if heading:
            if current is not None and current.bullets:
                slides.append(current)
            title = _EMPHASIS_EDGES.sub("", heading.group(2)).strip()
            current = OutlineSlide(index=int(heading.group(1)), title=title)
            continue

        if current is None:
            continue

        if _BOLD_KEYWORD.match(trimmed):
            bullet = trimmed
        elif trimmed[0] in "-•*":
            bullet = _BULLET_PREFIX.sub("", trimmed).strip()
        else:
            bullet = trimmed
        if bullet:
            current.bullets.append(bullet)

    if current is not None and current.bullets:
        slides.append(current)
    return slides


def outline_to_text(slides: Sequence[OutlineSlide]) -> str:
    blocks = []
    for slide in slides:
        bullets = "\n".join(f"- {bullet}" for bullet in slide.bullets)
        blocks.append(f"Slide {slide.index}: {slide.title}\n{bullets}")
    return "\n\n---\n\n".join(blocks)


def chunk_outline(slides: Sequence[OutlineSlide], size: int) -> list[list[OutlineSlide]]:
    if size <= 0:
        raise ValueError("chunk size must be a positive integer")
    return [list(slides[start : start + size]) for start in range(0, len(slides), size)]


def generate_outline(
    provider: BaseTextProvider,
    unit: Unit,
    *,
    slide_count: int,
    prompt_template: str,
    config: OutlineGeneratorConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[OutlineSlide]:
    """Generate the slide outline for one unit.

    Models are tried in order. Overload and rate-limit failures are retried
    with exponential backoff up to ``config.max_attempts`` per model before
    falling through to the next model; any other failure propagates at once.
    """
    if slide_count <= 0:
        raise ValueError("slide_count must be a positive integer")

    config = config or OutlineGeneratorConfig.for_provider(provider)
    if not config.models:
        raise OutlineGenerationError(f"No models configured for provider {provider.name}")

    prompt = build_outline_prompt(prompt_template, unit, slide_count)
    logger.info(
        "outline_prompt unit=%s slide_count=%d level1=%d level2=%d level3=%d prompt_preview=%s",
        unit.name,
        slide_count,
        len(unit.level1_topics),
        len(unit.level2_topics),
        len(unit.level3_topics),
        preview_text(prompt),
    )

    last_error: BaseException | None = None
    for model in config.models:
        for attempt in range(1, config.max_attempts + 1):
            logger.info(
                "outline_attempt provider=%s model=%s attempt=%d/%d",
                provider.name,
                model,
                attempt,
                config.max_attempts,
            )
            try:
                text = provider.generate_text(model=model, prompt=prompt)
            except Exception as exc:
                if not provider.is_transient(exc):
                    logger.error("outline_non_retryable provider=%s model=%s reason=%s", provider.name, model, exc)
                    raise
                last_error = exc
                logger.warning(
                    "outline_transient_error provider=%s model=%s attempt=%d/%d reason=%s",
                    provider.name,
                    model,
                    attempt,
                    config.max_attempts,
                    exc,
                )
                if attempt < config.max_attempts:
                    sleep(config.base_delay_seconds * (2**attempt))
                continue

            slides = parse_outline_text(text)
            logger.info(
                "outline_parsed provider=%s model=%s slides=%d first_titles=%s",
                provider.name,
                model,
                len(slides),
                [slide.title for slide in slides[:2]],
            )
            return slides

        logger.warning("outline_model_exhausted provider=%s model=%s", provider.name, model)

    raise OutlineGenerationError(
        f"All models failed. Last error: {last_error or 'Unknown error'}",
        last_error=last_error,
    )
