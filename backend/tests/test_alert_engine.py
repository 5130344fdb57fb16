import os
import sys
from datetime import date, datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from pawsy.models import Alert, AnalysisRecord, BreedRisk, DogProfile, Fact, FactSource, Pattern
from pawsy.services import alert_engine
from pawsy.services.alert_engine import dismiss_alert, generate_alerts, severity_to_priority, snooze_alert
from pawsy.services.pattern_detector import detect_patterns

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _dog(**overrides):
    values = {"id": "dog_1", "name": "Biscuit"}
    values.update(overrides)
    return DogProfile(**values)


def _alert(alert_type, key, status="active", snooze_until=None, alert_id="alert_existing", priority="medium"):
    return Alert(
        id=alert_id,
        dog_id="dog_1",
        type=alert_type,
        title="Existing",
        message="Existing alert",
        priority=priority,
        status=status,
        metadata={"key": key},
        created_at=NOW - timedelta(days=3),
        snooze_until=snooze_until,
    )


def _weight(value, days_ago):
    occurred_at = NOW - timedelta(days=days_ago)
    return Fact(
        id=f"fact_weight_{days_ago}",
        dog_id="dog_1",
        fact=f"Weight: {value}",
        category="weight",
        tags=["weight"],
        occurred_at=occurred_at,
        created_at=occurred_at,
        source=FactSource(type="manual"),
        value=value,
    )


def _record(kind, payload, days_ago=0, record_id=None):
    return AnalysisRecord(
        id=record_id or f"analysis_{kind}_{days_ago}",
        dog_id="dog_1",
        kind=kind,
        created_at=NOW - timedelta(days=days_ago),
        payload=payload,
    )


def _keys(alerts):
    return [alert.metadata["key"] for alert in alerts]


def test_labrador_aged_four_gets_hip_dysplasia_alert():
    alerts = generate_alerts(_dog(breed="Labrador Retriever", age_years=4), now=NOW)

    hip = [alert for alert in alerts if alert.metadata["key"] == "breed_risk:Hip Dysplasia"]
    assert len(hip) == 1
    assert hip[0].type == "breed_risk"
    assert hip[0].priority == "high"
    assert hip[0].status == "active"
    assert hip[0].dog_id == "dog_1"


def test_labrador_aged_seven_gets_no_hip_dysplasia_alert():
    alerts = generate_alerts(_dog(breed="Labrador Retriever", age_years=7), now=NOW)
    keys = _keys(alerts)
    assert "breed_risk:Hip Dysplasia" not in keys
    assert "breed_risk:Obesity" in keys


def test_breed_risk_age_from_date_of_birth():
    dog = _dog(breed="labrador", date_of_birth=date(2022, 3, 1))
    keys = _keys(generate_alerts(dog, now=NOW))
    assert "breed_risk:Hip Dysplasia" in keys


def test_breed_risk_requires_age_and_known_breed():
    assert generate_alerts(_dog(breed="Labrador Retriever"), now=NOW) == []
    assert generate_alerts(_dog(breed="Mystery Mutt", age_years=4), now=NOW) == []
    assert generate_alerts(_dog(age_years=4), now=NOW) == []


def test_breed_risk_priority_mapping_uses_lookup():
    risks = [
        BreedRisk(name="Critical Thing", age_min=0, age_max=20, severity="critical", description="a"),
        BreedRisk(name="Moderate Thing", age_min=0, age_max=20, severity="moderate", description="b"),
        BreedRisk(name="Low Thing", age_min=0, age_max=20, severity="low", description="c"),
    ]
    alerts = generate_alerts(_dog(breed="Custom", age=5), now=NOW, risk_lookup=lambda _: risks)
    assert [(alert.metadata["condition_name"], alert.priority) for alert in alerts] == [
        ("Critical Thing", "high"),
        ("Moderate Thing", "medium"),
        ("Low Thing", "low"),
    ]


def test_existing_live_alert_blocks_duplicate():
    existing = [_alert("breed_risk", "breed_risk:Hip Dysplasia")]
    alerts = generate_alerts(_dog(breed="Labrador Retriever", age_years=4), existing_alerts=existing, now=NOW)
    assert "breed_risk:Hip Dysplasia" not in _keys(alerts)


def test_dismissed_and_expired_snooze_do_not_block():
    dog = _dog(breed="Labrador Retriever", age_years=4)
    dismissed = [_alert("breed_risk", "breed_risk:Hip Dysplasia", status="dismissed")]
    expired = [_alert("breed_risk", "breed_risk:Hip Dysplasia", status="snoozed", snooze_until=NOW - timedelta(hours=1))]
    snoozed = [_alert("breed_risk", "breed_risk:Hip Dysplasia", status="snoozed", snooze_until=NOW + timedelta(days=2))]

    assert "breed_risk:Hip Dysplasia" in _keys(generate_alerts(dog, existing_alerts=dismissed, now=NOW))
    assert "breed_risk:Hip Dysplasia" in _keys(generate_alerts(dog, existing_alerts=expired, now=NOW))
    assert "breed_risk:Hip Dysplasia" not in _keys(generate_alerts(dog, existing_alerts=snoozed, now=NOW))


def test_same_key_of_other_type_does_not_block():
    existing = [_alert("symptom_pattern", "breed_risk:Hip Dysplasia")]
    alerts = generate_alerts(_dog(breed="Labrador Retriever", age_years=4), existing_alerts=existing, now=NOW)
    assert "breed_risk:Hip Dysplasia" in _keys(alerts)


def test_symptom_pattern_alerts_deduplicated_within_one_run():
    pattern = Pattern(
        tag="vomiting",
        count=3,
        severity="high",
        first_seen=NOW - timedelta(days=10),
        last_seen=NOW - timedelta(days=1),
        fact_ids=["f1", "f2", "f3"],
        description='"vomiting" has been recorded 3 times in the last 30 days.',
    )
    alerts = generate_alerts(_dog(), patterns=[pattern, pattern.model_copy()], now=NOW)

    assert _keys(alerts) == ["symptom_pattern:vomiting"]
    assert alerts[0].priority == "high"
    assert alerts[0].metadata["count"] == 3


def test_severity_to_priority_table():
    assert severity_to_priority("critical") == "high"
    assert severity_to_priority("high") == "high"
    assert severity_to_priority("moderate") == "medium"
    assert severity_to_priority("severe") == "low"
    assert severity_to_priority("mild") == "low"
    assert severity_to_priority(None) == "low"


def test_pattern_of_severe_facts_yields_low_priority_alert():
    facts = []
    for days in (1, 5, 10):
        occurred_at = NOW - timedelta(days=days)
        facts.append(
            Fact(
                id=f"fact_vomit_{days}",
                dog_id="dog_1",
                fact="Vomiting",
                category="symptom",
                tags=["vomiting"],
                severity="severe",
                occurred_at=occurred_at,
                created_at=occurred_at,
                source=FactSource(type="chat"),
            )
        )

    alerts = generate_alerts(_dog(), pet_facts=facts, patterns=detect_patterns(facts, now=NOW), now=NOW)

    assert _keys(alerts) == ["symptom_pattern:vomiting"]
    assert alerts[0].priority == "low"


def test_unparseable_ten_character_due_date_is_ignored():
    dog = _dog(vaccinations=[{"name": "Rabies", "next_due_date": "next month"}])
    assert dog.vaccinations[0].next_due_date is None
    assert generate_alerts(dog, now=NOW) == []


def test_vaccination_due_priorities():
    dog = _dog(
        vaccinations=[
            {"name": "Rabies", "next_due_date": (NOW + timedelta(days=3)).isoformat()},
            {"name": "Distemper", "next_due_date": (NOW + timedelta(days=14)).isoformat()},
            {"name": "Leptospirosis", "next_due_date": (NOW + timedelta(days=60)).isoformat()},
            {"name": "Bordetella", "next_due_date": (NOW - timedelta(days=4)).isoformat()},
            {"name": "Lyme"},
        ]
    )
    alerts = {alert.metadata["key"]: alert for alert in generate_alerts(dog, now=NOW)}

    assert set(alerts) == {"vaccination_due:Rabies", "vaccination_due:Distemper", "vaccination_due:Bordetella"}
    assert alerts["vaccination_due:Rabies"].priority == "high"
    assert "due in 3 day" in alerts["vaccination_due:Rabies"].message
    assert alerts["vaccination_due:Distemper"].priority == "medium"
    assert alerts["vaccination_due:Bordetella"].priority == "high"
    assert "was due 4 day" in alerts["vaccination_due:Bordetella"].message


def test_vaccination_date_only_values_are_accepted():
    dog = _dog(vaccinations=[{"name": "Rabies", "next_due_date": "2026-03-10"}])
    alerts = generate_alerts(dog, now=NOW)
    assert _keys(alerts) == ["vaccination_due:Rabies"]
    assert alerts[0].priority == "medium"


def test_weight_gain_over_ten_percent_is_high():
    alerts = generate_alerts(_dog(), pet_facts=[_weight(50, 60), _weight(56, 1)], now=NOW)
    assert _keys(alerts) == ["weight_trend:gain"]
    assert alerts[0].priority == "high"
    assert alerts[0].metadata["percent_change"] == 12.0


def test_weight_loss_between_five_and_ten_percent_is_medium():
    alerts = generate_alerts(_dog(), pet_facts=[_weight(40, 30), _weight(37, 2)], now=NOW)
    assert _keys(alerts) == ["weight_trend:loss"]
    assert alerts[0].priority == "medium"


def test_small_or_stale_weight_change_is_ignored():
    assert generate_alerts(_dog(), pet_facts=[_weight(50, 30), _weight(51, 1)], now=NOW) == []
    assert generate_alerts(_dog(), pet_facts=[_weight(50, 120), _weight(60, 1)], now=NOW) == []
    assert generate_alerts(_dog(), pet_facts=[_weight(50, 1)], now=NOW) == []


def test_lab_trend_needs_two_panels():
    first = _record(
        "blood_work",
        {"overall_assessment": "needs_attention", "values": [{"name": "ALT", "value": "150", "status": "high"}]},
        days_ago=60,
    )
    second = _record(
        "blood_work",
        {"overall_assessment": "normal", "values": [{"name": "alt", "value": "400", "status": "critical"}]},
        days_ago=20,
    )
    assert generate_alerts(_dog(), lab_analyses=[first], now=NOW) == []

    alerts = generate_alerts(_dog(), lab_analyses=[first, second], now=NOW)
    assert _keys(alerts) == ["lab_trend:alt"]
    assert alerts[0].priority == "high"
    assert alerts[0].metadata["panel_count"] == 2


def test_imaging_followup_for_abnormal_xray_with_extra_views():
    xray = _record(
        "xray",
        {
            "is_xray": True,
            "overall_impression": "abnormal_non_urgent",
            "findings": [{"structure": "Left elbow", "significance": "abnormal"}],
            "additional_views_suggested": ["Flexed lateral elbow"],
        },
        days_ago=5,
        record_id="analysis_xray_1",
    )
    alerts = generate_alerts(_dog(), lab_analyses=[xray], now=NOW)
    assert _keys(alerts) == ["imaging_followup:analysis_xray_1"]
    assert alerts[0].priority == "medium"


def test_imaging_followup_skips_normal_or_old_xrays():
    normal = _record(
        "xray",
        {"overall_impression": "normal", "findings": [], "additional_views_suggested": ["VD view"]},
        days_ago=2,
    )
    old = _record(
        "xray",
        {"overall_impression": "abnormal_non_urgent", "additional_views_suggested": ["VD view"]},
        days_ago=45,
    )
    no_views = _record("xray", {"overall_impression": "abnormal_non_urgent"}, days_ago=3)
    assert generate_alerts(_dog(), lab_analyses=[normal, old, no_views], now=NOW) == []


def test_abnormal_lab_names_critical_markers():
    panel = _record(
        "blood_work",
        {
            "overall_assessment": "concerning",
            "values": [
                {"name": "Creatinine", "value": "6.2", "status": "critical"},
                {"name": "BUN", "value": "90", "status": "high"},
            ],
        },
        days_ago=1,
        record_id="analysis_panel_1",
    )
    alerts = generate_alerts(_dog(), lab_analyses=[panel], now=NOW)
    assert _keys(alerts) == ["abnormal_lab:analysis_panel_1"]
    assert alerts[0].priority == "high"
    assert alerts[0].metadata["critical_markers"] == ["Creatinine"]
    assert "Creatinine" in alerts[0].message


def test_abnormal_lab_ignores_old_or_unremarkable_results():
    old = _record("blood_work", {"overall_assessment": "concerning"}, days_ago=10)
    fine = _record("blood_work", {"overall_assessment": "needs_attention"}, days_ago=1)
    assert generate_alerts(_dog(), lab_analyses=[old, fine], now=NOW) == []


def test_results_sorted_by_priority():
    dog = _dog(
        breed="Labrador Retriever",
        age_years=4,
        vaccinations=[{"name": "Rabies", "next_due_date": (NOW + timedelta(days=2)).isoformat()}],
    )
    alerts = generate_alerts(dog, now=NOW)
    ranks = [alert_engine.priority_rank(alert.priority) for alert in alerts]
    assert ranks == sorted(ranks, reverse=True)


def test_no_live_duplicates_across_existing_and_new():
    dog = _dog(breed="Labrador Retriever", age_years=4)
    first = generate_alerts(dog, now=NOW)
    second = generate_alerts(dog, existing_alerts=first, now=NOW)
    assert second == []


def test_none_dog_yields_no_alerts():
    assert generate_alerts(None, now=NOW) == []


def test_dismiss_only_touches_target():
    alerts = [
        _alert("breed_risk", "breed_risk:A", alert_id="a1"),
        _alert("breed_risk", "breed_risk:B", alert_id="a2"),
    ]
    updated = dismiss_alert(alerts, "a1", now=NOW)

    assert updated[0].status == "dismissed"
    assert updated[0].dismissed_at == NOW
    assert updated[1] == alerts[1]
    assert alerts[0].status == "active"


def test_dismiss_is_idempotent():
    alerts = dismiss_alert([_alert("breed_risk", "breed_risk:A", alert_id="a1")], "a1", now=NOW)
    again = dismiss_alert(alerts, "a1", now=NOW + timedelta(days=1))
    assert again == alerts


def test_snooze_sets_expiry():
    alerts = [_alert("breed_risk", "breed_risk:A", alert_id="a1"), _alert("breed_risk", "breed_risk:B", alert_id="a2")]
    updated = snooze_alert(alerts, "a2", 7, now=NOW)
    assert updated[1].status == "snoozed"
    assert updated[1].snooze_until == NOW + timedelta(days=7)
    assert updated[0] == alerts[0]


def test_unknown_alert_id_is_a_no_op():
    alerts = [_alert("breed_risk", "breed_risk:A", alert_id="a1")]
    assert dismiss_alert(alerts, "missing", now=NOW) == alerts
    assert len(snooze_alert(alerts, "missing", 3, now=NOW)) == 1
    assert dismiss_alert(None, "a1") == []
