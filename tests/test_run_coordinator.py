import pytest

from deck_automation.services.gamma_client import GammaClient, JobState, RunBudget
from deck_automation.services.outline_service import OutlineGeneratorConfig
from deck_automation.services.run_coordinator import (
    RUN_BUDGET_EXHAUSTED,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RunCoordinator,
    part_name,
)
from deck_automation.services.tracking_store import TrackingHandle, TrackingStatus, TrackingStore, TrackingStoreError
from fakes import FakeProvider, FakeSession, make_unit, outline_text, started, status


CONFIG = OutlineGeneratorConfig(models=("model-a",), max_attempts=1, base_delay_seconds=0.0)


@pytest.mark.parametrize(
    ("unit_name", "number", "expected"),
    [
        ("UNIT – 1 INTRODUCTION", 1, "Unit-1_Introduction_Part-1"),
        ("Unit-2 Market Structures & Pricing", 3, "Unit-2_Market-Structures-Pricing_Part-3"),
        ("UNIT 10: Fiscal policy", 2, "Unit-10_Fiscal-Policy_Part-2"),
        ("Appendix", 1, "Unit-0_Appendix_Part-1"),
    ],
)
def test_part_name(unit_name, number, expected):
    assert part_name(unit_name, number) == expected


def _coordinator(provider, session, clock, budget, *, tracking=None, chunk_size=60, recorder=None):
    return RunCoordinator(
        provider=provider,
        gamma=GammaClient("test-key", session=session, poll_interval=3.0, max_polls=300, sleep=clock.sleep),
        budget=budget,
        prompt_template="Outline {unitName} in {slideCount} slides",
        slides_per_unit=3,
        chunk_size=chunk_size,
        outline_config=CONFIG,
        tracking=tracking,
        tracking_handle=TrackingHandle("sheet-1", "Macro_PPT_Tracker") if tracking else None,
        job_recorder=recorder,
        heartbeat_polls=2,
        sleep=clock.sleep,
    )


def _types(events):
    return [event.type for event in events]


def test_run_completes_part_and_tracks_it(clock, sheets, drive):
    tracking = TrackingStore(sheets, drive)
    session = FakeSession(
        post=[started("gen-1")],
        get=[status("pending"), status("pending"), status("completed", gammaUrl="https://x")],
    )
    recorded = []
    coordinator = _coordinator(
        FakeProvider([outline_text(3)]),
        session,
        clock,
        RunBudget(270, clock=clock),
        tracking=tracking,
        recorder=lambda job: recorded.append(job.state),
    )

    events = list(coordinator.run([make_unit()]))

    part_event = next(event for event in events if event.type == "part_complete")
    assert part_event.fields["part"] == {
        "partNumber": 1,
        "gammaUrl": "https://x",
        "downloadUrl": None,
        "partName": "Unit-1_Introduction_Part-1",
    }
    assert _types(events)[-2:] == ["unit_complete", "complete"]
    assert events[-2].fields["status"] == "completed"
    assert events[-1].fields["message"] == "Automation completed!"
    assert coordinator.status == RUN_COMPLETED
    assert recorded == [JobState.POLLING, JobState.COMPLETED]
    assert sheets.rows["sheet-1"] == [
        ["Unit-1_Introduction_Part-1", "✅ Complete", "https://x", "gen-1", sheets.rows["sheet-1"][0][4]]
    ]
    assert "Still generating Unit-1_Introduction_Part-1... (0 min elapsed)" in [
        event.fields.get("message") for event in events
    ]


def test_pending_part_is_tracked_once_when_budget_runs_out(clock, sheets, drive):
    tracking = TrackingStore(sheets, drive)
    session = FakeSession(post=[started("gen-1"), started("gen-2")], get=[status("pending")])
    coordinator = _coordinator(
        FakeProvider([outline_text(3)]),
        session,
        clock,
        RunBudget(10, clock=clock),
        tracking=tracking,
        chunk_size=2,
    )

    events = list(coordinator.run([make_unit(), make_unit("UNIT 2 Policy")]))

    pending = [event for event in events if event.type == "part_pending"]
    assert len(pending) == 1
    assert pending[0].fields["part"]["generationId"] == "gen-1"
    assert pending[0].fields["part"]["status"] == "pending"
    assert len(session.posts) == 1
    assert [row[1] for row in sheets.rows["sheet-1"]] == [TrackingStatus.PENDING.label]
    assert sheets.rows["sheet-1"][0][3] == "gen-1"
    assert "partial" in [event.fields.get("status") for event in events if event.type == "unit_complete"]
    assert events[-1].type == "complete"
    assert "time budget" in events[-1].fields["message"]
    assert coordinator.status == RUN_BUDGET_EXHAUSTED


def test_unit_error_does_not_stop_later_units(clock):
    def reply(model, prompt):
        if "UNIT 1" in prompt:
            return ValueError("quota rejected")
        return outline_text(2)

    session = FakeSession(post=[started("gen-2")], get=[status("done", gammaUrl="https://two")])
    coordinator = _coordinator(FakeProvider([reply]), session, clock, RunBudget(270, clock=clock))

    events = list(coordinator.run([make_unit("UNIT 1 Basics"), make_unit("UNIT 2 Policy")]))

    errors = [event for event in events if event.type == "unit_error"]
    assert len(errors) == 1
    assert errors[0].fields == {"unit": "UNIT 1 Basics", "status": "error", "error": "quota rejected"}
    assert errors[0].severity == "error"
    completed = [event for event in events if event.type == "unit_complete"]
    assert [event.fields["unit"] for event in completed] == ["UNIT 2 Policy"]
    assert events[-1].type == "complete"


def test_failed_generation_is_tracked_and_reported_as_unit_error(clock, sheets, drive):
    tracking = TrackingStore(sheets, drive)
    session = FakeSession(post=[started("gen-9")], get=[status("error", error="render crashed")])
    coordinator = _coordinator(
        FakeProvider([outline_text(2)]),
        session,
        clock,
        RunBudget(270, clock=clock),
        tracking=tracking,
    )

    events = list(coordinator.run([make_unit()]))

    assert _types(events)[-2:] == ["unit_error", "complete"]
    assert "render crashed" in events[-2].fields["error"]
    assert sheets.rows["sheet-1"][0][1] == TrackingStatus.FAILED.label
    assert sheets.rows["sheet-1"][0][2] == "-"


def test_cancelled_run_ends_without_complete_event(clock):
    budget = RunBudget(270, clock=clock)
    budget.abort()
    coordinator = _coordinator(FakeProvider([outline_text(2)]), FakeSession(), clock, budget)

    events = list(coordinator.run([make_unit()]))

    assert _types(events) == ["warning"]
    assert coordinator.status == RUN_CANCELLED


def test_cancel_during_poll_tracks_part_as_pending(clock, sheets, drive):
    tracking = TrackingStore(sheets, drive)
    session = FakeSession(post=[started("gen-5")], get=[status("pending")])
    budget = RunBudget(270, clock=clock, abort_signal=lambda: len(session.gets) >= 2)
    coordinator = _coordinator(FakeProvider([outline_text(2)]), session, clock, budget, tracking=tracking)

    events = list(coordinator.run([make_unit(), make_unit("UNIT 2 Policy")]))

    assert events[-1].type == "warning"
    assert "complete" not in _types(events)
    assert coordinator.status == RUN_CANCELLED
    assert sheets.rows["sheet-1"][0][1] == TrackingStatus.PENDING.label
    assert sheets.rows["sheet-1"][0][3] == "gen-5"


class _UnavailableSheet(TrackingStore):
    def append(self, handle, records):
        raise TrackingStoreError("Failed to append rows: 503")


def test_tracking_failure_does_not_drop_finished_parts(clock, sheets, drive):
    session = FakeSession(
        post=[started("gen-1"), started("gen-2")],
        get=[status("completed", gammaUrl="https://x"), status("pending")],
    )
    coordinator = _coordinator(
        FakeProvider([outline_text(3)]),
        session,
        clock,
        RunBudget(10, clock=clock),
        tracking=_UnavailableSheet(sheets, drive),
        chunk_size=2,
    )

    events = list(coordinator.run([make_unit()]))

    assert "unit_error" not in _types(events)
    completed = next(event for event in events if event.type == "part_complete")
    assert completed.fields["part"]["gammaUrl"] == "https://x"
    pending = next(event for event in events if event.type == "part_pending")
    assert pending.fields["part"]["generationId"] == "gen-2"
    warnings = [event.fields["message"] for event in events if event.type == "warning"]
    assert any("Unit-1_Introduction_Part-1" in message and "gen-1" in message for message in warnings)
    assert any("Unit-1_Introduction_Part-2" in message and "gen-2" in message for message in warnings)
    assert events[-2].fields["status"] == "pending"
