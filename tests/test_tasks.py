import pytest

from deck_automation import tasks
from deck_automation.config import settings
from deck_automation.services import job_trace
from deck_automation.services import progress_events as events
from deck_automation.services.automation_service import AutomationSession


def test_sweep_task_without_configured_sheets(monkeypatch):
    monkeypatch.setattr(settings, "tracking_sheets", [])

    assert tasks.sweep_pending_tracking_sheets.run() == {"totalChecked": 0, "totalUpdated": 0, "results": []}


def test_sweep_task_requires_stored_tokens(monkeypatch):
    monkeypatch.setattr(settings, "tracking_sheets", [{"id": "s1", "name": "Macro"}])
    monkeypatch.setattr(tasks.credential_store, "google_tokens", lambda: None)

    with pytest.raises(RuntimeError, match="Google tokens"):
        tasks.sweep_pending_tracking_sheets.run()


def test_background_run_reads_cancel_flag_from_database(monkeypatch):
    seen = {}

    def scripted(self):
        seen["aborted_before"] = self.budget.aborted
        job_trace.update_run(self.run_id, cancel_requested=1)
        seen["aborted_after"] = self.budget.aborted
        self.status = "cancelled"
        yield events.warning("Automation cancelled before UNIT 1; 1 unit(s) not started.")

    monkeypatch.setattr(AutomationSession, "events", scripted)
    job_trace.create_run(run_id="bg-1", mode="background", payload={})

    status = tasks.run_automation_job.run("bg-1", {"drive_file_id": "file-1"})

    assert status == "cancelled"
    assert seen == {"aborted_before": False, "aborted_after": True}
