import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "scripts"))

from pipeline_telemetry_report import build_report, parse_payload


def test_parse_payload_extracts_json_from_log_line():
    line = (
        'INFO:pawsy.services.analysis_orchestrator:pipeline_telemetry={"dog_id": "dog_1", "kind": "chat", '
        '"new_alerts": 2, "new_facts": 1, "pattern_count": 1, "pin_suggested": true, "updated_facts": 0}'
    )
    payload = parse_payload(line)
    assert payload["dog_id"] == "dog_1"
    assert payload["new_alerts"] == 2


def test_parse_payload_ignores_other_lines():
    assert parse_payload("INFO:uvicorn:started") is None
    assert parse_payload("pipeline_telemetry={broken") is None


def test_build_report_aggregates_runs():
    rows = [
        {"dog_id": "dog_1", "kind": "chat", "new_facts": 2, "updated_facts": 0, "pattern_count": 0, "new_alerts": 0},
        {"dog_id": "dog_1", "kind": "chat", "new_facts": 0, "updated_facts": 1, "pattern_count": 1, "new_alerts": 1},
        {"dog_id": "dog_2", "kind": "blood_work", "new_facts": 3, "new_alerts": 2, "pin_suggested": True},
        {"dog_id": "dog_2", "kind": "weight", "new_facts": "bad", "new_alerts": None},
    ]
    report = build_report(rows)

    assert report["total_runs"] == 4
    assert report["kind_counts"] == {"chat": 2, "blood_work": 1, "weight": 1}
    assert report["facts"]["new"] == 5
    assert report["facts"]["updated"] == 1
    assert report["alerts"]["new"] == 3
    assert report["alerts"]["runs_with_alerts"] == 2
    assert report["alerts"]["top_dogs"] == {"dog_2": 2, "dog_1": 1}
    assert report["pattern_rate"] == 0.25
    assert report["pin_suggestion_rate"] == 0.25


def test_build_report_handles_no_rows():
    report = build_report([])
    assert report["total_runs"] == 0
    assert report["alerts"]["alert_rate"] == 0.0
