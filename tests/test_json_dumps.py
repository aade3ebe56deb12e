import json
from datetime import date, datetime, timezone
from pathlib import Path

from altwatch.models import FindingRow
from altwatch.storage import get_job, save_job
from altwatch.jobs import JobCoordinator
from altwatch.utils import json_dumps

from conftest import configure


def test_json_dumps_handles_supported_types():
    payload = {
        "row": FindingRow(
            source="media",
            severity="error",
            issues=["missing_alt"],
            matched_rule="missing_alt",
            alt_raw="",
            alt_trimmed="",
            alt_length=0,
            attachment_id=4,
        ),
        "datetime": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "date": date(2025, 1, 2),
        "path": Path("/tmp/altwatch"),
        "set": {"b", "a"},
        "words": frozenset({"photo"}),
        "tuple": ("x", "y"),
    }
    decoded = json.loads(json_dumps(payload))
    assert decoded["row"]["attachment_id"] == 4
    assert decoded["row"]["issues"] == ["missing_alt"]
    assert decoded["datetime"].startswith("2025-01-01T00:00:00")
    assert decoded["date"] == "2025-01-02"
    assert decoded["path"] == "/tmp/altwatch"
    assert decoded["set"] == ["a", "b"]
    assert decoded["words"] == ["photo"]
    assert decoded["tuple"] == ["x", "y"]


def test_job_payload_round_trips_through_storage(conn):
    configure(conn, rules={"generic_words": "photo,image"})
    job = JobCoordinator(conn, None, None).start_scan("content")
    stored = get_job(conn, job.id)
    assert stored == job
    assert stored.payload["rules"]["generic_words"] == ["image", "photo"]
    assert stored.payload["batch_size"] == 5

    save_job(conn, stored)
    assert get_job(conn, job.id) == job
