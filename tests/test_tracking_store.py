import pytest

from deck_automation.services.tracking_store import (
    HEADER_ROW,
    TrackingRecord,
    TrackingStatus,
    TrackingStore,
)
from fakes import FakeDrive


def test_status_labels_round_trip_through_parse():
    assert TrackingStatus.PENDING.label == "⏳ Pending"
    assert TrackingStatus.parse("✅ Complete") is TrackingStatus.COMPLETE
    assert TrackingStatus.parse("Failed") is TrackingStatus.FAILED
    assert TrackingStatus.parse("") is None
    assert TrackingStatus.parse("Archived") is None


def test_record_from_short_row_fills_blanks():
    record = TrackingRecord.from_row(["Unit-1_Intro_Part-1", "⏳ Pending"])

    assert record.status is TrackingStatus.PENDING
    assert record.url == ""
    assert record.generation_id == ""
    assert TrackingRecord.from_row(["orphan", "unknown"]) is None


def test_find_or_create_reuses_similar_sheet(sheets):
    drive = FakeDrive(files=[{"id": "existing", "name": "Macroeconomics_PPT_Tracker"}])

    handle = TrackingStore(sheets, drive).find_or_create("Macroeconomics", "folder-1")

    assert (handle.spreadsheet_id, handle.created) == ("existing", False)
    assert handle.similarity == 1.0
    assert sheets.created == []
    assert "'folder-1' in parents" in drive.queries[0]


def test_find_or_create_creates_sheet_with_header(sheets):
    drive = FakeDrive(files=[{"id": "other", "name": "Organic Chemistry Links"}])

    handle = TrackingStore(sheets, drive).find_or_create("Macroeconomics", "folder-1")

    assert handle.created is True
    assert handle.name == "Macroeconomics_PPT_Tracker"
    assert sheets.created[0]["properties"]["title"] == "Macroeconomics_PPT_Tracker"
    assert sheets.created[0]["sheets"][0]["properties"]["title"] == "PPT Links"
    assert drive.moves == [(handle.spreadsheet_id, "folder-1")]
    assert sheets.rows[handle.spreadsheet_id] == [HEADER_ROW]


def test_append_then_read_records_reports_sheet_positions(sheets, drive):
    store = TrackingStore(sheets, drive)
    sheets.rows["s1"].append(list(HEADER_ROW))
    store.append(
        "s1",
        [
            TrackingRecord("Unit-1_A_Part-1", TrackingStatus.COMPLETE, "https://a", "g1", "t"),
            TrackingRecord("Unit-1_A_Part-2", TrackingStatus.PENDING, "-", "g2", "t"),
        ],
    )

    records = store.read_records("s1")

    assert [(position, record.generation_id) for position, record in records] == [(2, "g1"), (3, "g2")]
    assert ("append", "s1", "'PPT Links'!A:E") in sheets.calls


def test_update_rewrites_addressed_rows(sheets, drive):
    store = TrackingStore(sheets, drive)
    sheets.rows["s1"].extend([list(HEADER_ROW), ["p1", "⏳ Pending", "-", "g1", "t"]])

    store.update("s1", [(2, TrackingRecord("p1", TrackingStatus.COMPLETE, "https://done", "g1", "t2"))])

    assert sheets.rows["s1"][1] == ["p1", "✅ Complete", "https://done", "g1", "t2"]


def test_update_refuses_header_row(sheets, drive):
    with pytest.raises(ValueError):
        TrackingStore(sheets, drive).update("s1", [(1, TrackingRecord("p", TrackingStatus.PENDING))])
