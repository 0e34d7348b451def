import pytest

from deck_automation.services.outline_service import (
    OutlineGenerationError,
    OutlineGeneratorConfig,
    OutlineSlide,
    build_outline_prompt,
    chunk_outline,
    generate_outline,
    outline_to_text,
    parse_outline_text,
)
from fakes import FakeProvider, TransientError, make_unit, outline_text


CONFIG = OutlineGeneratorConfig(models=("model-a", "model-b"), max_attempts=3, base_delay_seconds=1.0)


def _slides(count):
    return [OutlineSlide(index=n, title=f"S{n}", bullets=["b"]) for n in range(1, count + 1)]


def test_chunk_outline_preserves_order_and_sizes():
    slides = _slides(130)
    chunks = chunk_outline(slides, 60)

    assert [len(chunk) for chunk in chunks] == [60, 60, 10]
    assert [slide for chunk in chunks for slide in chunk] == slides


def test_chunk_outline_small_and_empty_inputs():
    assert chunk_outline(_slides(5), 60) == [_slides(5)]
    assert chunk_outline([], 60) == []


@pytest.mark.parametrize("size", [0, -3])
def test_chunk_outline_rejects_non_positive_size(size):
    with pytest.raises(ValueError):
        chunk_outline(_slides(3), size)


def test_parse_outline_text_handles_loose_formatting():
    text = "\n".join(
        [
            "Here is your outline:",
            "**Slide 1: Introduction**",
            "- What demand means",
            "• Why it matters",
            "---",
            "## Slide 2 – Market Forces",
            "**Supply**: producers respond to price",
            "* Equilibrium",
            "Prices clear the market",
            "Slide 3: Empty heading",
            "Slide 4 - Wrap Up",
            "- Summary",
        ]
    )

    slides = parse_outline_text(text)

    assert [(slide.index, slide.title) for slide in slides] == [
        (1, "Introduction"),
        (2, "Market Forces"),
        (4, "Wrap Up"),
    ]
    assert slides[0].bullets == ["What demand means", "Why it matters"]
    assert slides[1].bullets == [
        "**Supply**: producers respond to price",
        "Equilibrium",
        "Prices clear the market",
    ]
    assert slides[2].bullets == ["Summary"]


def test_parse_outline_text_without_headings_is_empty():
    assert parse_outline_text("just some prose\n- and a stray bullet") == []
    assert parse_outline_text("") == []


def test_outline_to_text_separates_slides():
    text = outline_to_text([OutlineSlide(1, "One", ["a", "b"]), OutlineSlide(2, "Two", ["c"])])

    assert text == "Slide 1: One\n- a\n- b\n\n---\n\nSlide 2: Two\n- c"


def test_build_outline_prompt_fills_placeholders():
    template = "{unitName}|{level1Topics}|{level2Topics}|{level3Topics}|{slideCount}\n{topicTree}"

    prompt = build_outline_prompt(template, make_unit(), 12)

    assert prompt == "UNIT – 1 INTRODUCTION|Demand|Curves|Shifts|12\n- Demand\n  - Curves\n    - Shifts"


def test_generate_outline_returns_parsed_slides():
    provider = FakeProvider([outline_text(3)])

    slides = generate_outline(provider, make_unit(), slide_count=3, prompt_template="{unitName}", config=CONFIG)

    assert [slide.title for slide in slides] == ["Topic 1", "Topic 2", "Topic 3"]
    assert provider.calls == ["model-a"]


def test_generate_outline_retries_transient_errors_then_falls_back():
    provider = FakeProvider([TransientError(), TransientError(), TransientError("429 rate limit", 429), outline_text(2)])
    delays = []

    slides = generate_outline(
        provider,
        make_unit(),
        slide_count=2,
        prompt_template="{unitName}",
        config=CONFIG,
        sleep=delays.append,
    )

    assert len(slides) == 2
    assert provider.calls == ["model-a", "model-a", "model-a", "model-b"]
    assert delays == [2.0, 4.0]


def test_generate_outline_non_transient_error_propagates_immediately():
    provider = FakeProvider([ValueError("invalid api key")])

    with pytest.raises(ValueError, match="invalid api key"):
        generate_outline(provider, make_unit(), slide_count=2, prompt_template="x", config=CONFIG, sleep=lambda _: None)

    assert provider.calls == ["model-a"]


def test_generate_outline_reports_last_error_when_every_model_fails():
    provider = FakeProvider([TransientError("service unavailable 503")])

    with pytest.raises(OutlineGenerationError, match="All models failed") as caught:
        generate_outline(provider, make_unit(), slide_count=2, prompt_template="x", config=CONFIG, sleep=lambda _: None)

    assert isinstance(caught.value.last_error, TransientError)
    assert len(provider.calls) == 6


def test_generate_outline_rejects_non_positive_slide_count():
    with pytest.raises(ValueError):
        generate_outline(FakeProvider(["x"]), make_unit(), slide_count=0, prompt_template="x", config=CONFIG)
