"""Rule-based health alerts.

Each rule reads the dog profile, fact history, detected patterns or stored
diagnostic results and proposes alerts. A proposal is dropped when a live
alert with the same type and metadata key already exists; proposals made
earlier in the same run count as existing.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from pawsy.models import (
    Alert,
    AnalysisRecord,
    BreedRisk,
    DogProfile,
    Fact,
    LabAssessment,
    Pattern,
    as_utc,
    parse_assessment,
    utc_now,
)
from pawsy.services import breed_risks

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}

VACCINATION_LOOKAHEAD_DAYS = 30
VACCINATION_URGENT_DAYS = 7
WEIGHT_WINDOW_DAYS = 90
WEIGHT_ALERT_PERCENT = 5.0
WEIGHT_HIGH_PERCENT = 10.0
IMAGING_WINDOW_DAYS = 30
ABNORMAL_LAB_WINDOW_DAYS = 7

URGENT_ASSESSMENTS = {"concerning", "critical", "urgent"}
URGENT_IMPRESSIONS = {"abnormal_urgent", "critical"}
ABNORMAL_FINDINGS = {"abnormal", "critical"}


# ---------------------------------------------------------------------------
# Deduplication keys
# ---------------------------------------------------------------------------


def breed_risk_key(condition: str) -> str:
    return f"breed_risk:{condition}"


def symptom_pattern_key(tag: str) -> str:
    return f"symptom_pattern:{tag}"


def vaccination_due_key(vaccination_name: str) -> str:
    return f"vaccination_due:{vaccination_name}"


def weight_trend_key(direction: str) -> str:
    return f"weight_trend:{direction}"


def lab_trend_key(marker: str) -> str:
    return f"lab_trend:{marker.strip().lower()}"


def imaging_followup_key(analysis_id: str) -> str:
    return f"imaging_followup:{analysis_id}"


def abnormal_lab_key(analysis_id: str) -> str:
    return f"abnormal_lab:{analysis_id}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def priority_rank(priority: Optional[str]) -> int:
    return PRIORITY_ORDER.get(priority or "", 0)


def severity_to_priority(severity: Optional[str]) -> str:
    if severity in {"high", "critical"}:
        return "high"
    if severity == "moderate":
        return "medium"
    return "low"


def is_live(alert: Alert, now: datetime) -> bool:
    if alert.status == "dismissed":
        return False
    if alert.status == "snoozed":
        return alert.snooze_until is not None and alert.snooze_until > now
    return True


def is_duplicate(existing_alerts: Iterable[Alert], alert_type: str, key: str, now: datetime) -> bool:
    return any(alert.type == alert_type and alert.key == key and is_live(alert, now) for alert in existing_alerts)


def _new_alert(
    dog: DogProfile,
    alert_type: str,
    key: str,
    title: str,
    message: str,
    priority: str,
    now: datetime,
    **metadata: Any,
) -> Alert:
    return Alert(
        id=f"alert_{uuid4().hex}",
        dog_id=dog.id,
        type=alert_type,  # type: ignore[arg-type]
        title=title,
        message=message,
        priority=priority,  # type: ignore[arg-type]
        metadata={"key": key, **metadata},
        created_at=now,
    )


def _lab_results(records: Iterable[AnalysisRecord], kinds: Iterable[str]) -> List[tuple[AnalysisRecord, LabAssessment]]:
    wanted = set(kinds)
    selected = [record for record in records if record.kind in wanted]
    selected.sort(key=lambda record: record.created_at)
    return [(record, parse_assessment(LabAssessment, record.payload)) for record in selected]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _breed_risk_alerts(
    dog: DogProfile,
    existing: List[Alert],
    now: datetime,
    risk_lookup: Callable[[Optional[str]], List[BreedRisk]],
) -> List[Alert]:
    if not dog.breed:
        return []
    age = dog.age_in_years(now)
    if age is None:
        return []

    alerts: List[Alert] = []
    for risk in risk_lookup(dog.breed):
        if age < risk.age_min or age > risk.age_max:
            continue
        key = breed_risk_key(risk.name)
        if is_duplicate(existing + alerts, "breed_risk", key, now):
            continue
        age_range = f"{risk.age_min:g}-{risk.age_max:g}"
        alerts.append(
            _new_alert(
                dog,
                "breed_risk",
                key,
                title=f"{risk.name} Risk",
                message=(
                    f"{dog.breed} dogs aged {age_range} years are at risk for {risk.name.lower()}. "
                    f"{risk.description}"
                ),
                priority=severity_to_priority(risk.severity),
                now=now,
                condition_name=risk.name,
                breed=dog.breed,
                severity=risk.severity,
                age_range={"min": risk.age_min, "max": risk.age_max},
            )
        )
    return alerts


def _symptom_pattern_alerts(dog: DogProfile, patterns: List[Pattern], existing: List[Alert], now: datetime) -> List[Alert]:
    alerts: List[Alert] = []
    for pattern in patterns:
        key = symptom_pattern_key(pattern.tag)
        if is_duplicate(existing + alerts, "symptom_pattern", key, now):
            continue
        alerts.append(
            _new_alert(
                dog,
                "symptom_pattern",
                key,
                title=f"Recurring: {pattern.tag}",
                message=pattern.description or f'"{pattern.tag}" has occurred {pattern.count} times recently.',
                priority=severity_to_priority(pattern.severity or "moderate"),
                now=now,
                tag=pattern.tag,
                count=pattern.count,
                severity=pattern.severity,
                first_seen=pattern.first_seen.isoformat(),
                last_seen=pattern.last_seen.isoformat(),
                fact_ids=list(pattern.fact_ids),
            )
        )
    return alerts


def _vaccination_alerts(dog: DogProfile, existing: List[Alert], now: datetime) -> List[Alert]:
    horizon = now + timedelta(days=VACCINATION_LOOKAHEAD_DAYS)
    alerts: List[Alert] = []
    for vaccination in dog.vaccinations:
        due = vaccination.next_due_date
        if due is None or due > horizon:
            continue
        key = vaccination_due_key(vaccination.name)
        if is_duplicate(existing + alerts, "vaccination_due", key, now):
            continue

        days_until = _ceil_days(due - now)
        overdue = days_until < 0
        if overdue:
            message = f"{vaccination.name} was due {abs(days_until)} day(s) ago. Schedule with your vet."
        else:
            message = f"{vaccination.name} is due in {days_until} day(s). Schedule with your vet."
        alerts.append(
            _new_alert(
                dog,
                "vaccination_due",
                key,
                title=f"{vaccination.name} Due",
                message=message,
                priority="high" if overdue or days_until <= VACCINATION_URGENT_DAYS else "medium",
                now=now,
                vaccination_name=vaccination.name,
                next_due_date=due.isoformat(),
                days_until=days_until,
            )
        )
    return alerts


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / 86400)


def _is_weight_fact(fact: Fact) -> bool:
    tags = [tag.lower() for tag in fact.tags]
    if "weight" in tags or fact.category == "weight":
        return True
    return fact.value is not None and any("weight" in tag for tag in tags)


def _weight_trend_alerts(dog: DogProfile, facts: List[Fact], existing: List[Alert], now: datetime) -> List[Alert]:
    window_start = now - timedelta(days=WEIGHT_WINDOW_DAYS)
    readings = sorted(
        (fact for fact in facts if _is_weight_fact(fact) and fact.value is not None and fact.occurred_at >= window_start),
        key=lambda fact: fact.occurred_at,
    )
    if len(readings) < 2:
        return []

    earliest, latest = readings[0], readings[-1]
    if not earliest.value:
        return []
    change = (latest.value - earliest.value) / earliest.value * 100
    percent = abs(change)
    if percent < WEIGHT_ALERT_PERCENT:
        return []

    direction = "gain" if change > 0 else "loss"
    key = weight_trend_key(direction)
    if is_duplicate(existing, "weight_trend", key, now):
        return []

    return [
        _new_alert(
            dog,
            "weight_trend",
            key,
            title=f"Significant Weight {direction.title()}",
            message=(
                f"{dog.name or 'Your dog'} has shown a {percent:.1f}% weight {direction} over the last "
                f"{WEIGHT_WINDOW_DAYS} days ({earliest.value:g} -> {latest.value:g}). Discuss with your vet."
            ),
            priority="high" if percent >= WEIGHT_HIGH_PERCENT else "medium",
            now=now,
            direction=direction,
            percent_change=round(percent, 1),
            earliest_weight=earliest.value,
            latest_weight=latest.value,
            earliest_date=earliest.occurred_at.isoformat(),
            latest_date=latest.occurred_at.isoformat(),
        )
    ]


def _lab_trend_alerts(dog: DogProfile, records: List[AnalysisRecord], existing: List[Alert], now: datetime) -> List[Alert]:
    occurrences: Dict[str, List[Dict[str, str]]] = {}
    for record, panel in _lab_results(records, ["blood_work"]):
        seen_in_panel: Dict[str, Dict[str, str]] = {}
        for marker in panel.marker_values():
            if marker.status == "normal":
                continue
            seen_in_panel[marker.name.strip().lower()] = {
                "name": marker.name,
                "status": marker.status,
                "analysis_id": record.id,
            }
        for marker_key, hit in seen_in_panel.items():
            occurrences.setdefault(marker_key, []).append(hit)

    alerts: List[Alert] = []
    for marker_key, hits in occurrences.items():
        if len(hits) < 2:
            continue
        key = lab_trend_key(marker_key)
        if is_duplicate(existing + alerts, "lab_trend", key, now):
            continue
        latest = hits[-1]
        alerts.append(
            _new_alert(
                dog,
                "lab_trend",
                key,
                title=f"Recurring abnormal {latest['name']}",
                message=(
                    f"{latest['name']} has been outside the normal range in {len(hits)} blood panels "
                    f"(most recently {latest['status']}). Ask your vet whether follow-up testing is needed."
                ),
                priority="high" if latest["status"] == "critical" else "medium",
                now=now,
                marker=latest["name"],
                panel_count=len(hits),
                latest_status=latest["status"],
                analysis_ids=[hit["analysis_id"] for hit in hits],
            )
        )
    return alerts


def _imaging_followup_alerts(
    dog: DogProfile, records: List[AnalysisRecord], existing: List[Alert], now: datetime
) -> List[Alert]:
    window_start = now - timedelta(days=IMAGING_WINDOW_DAYS)
    alerts: List[Alert] = []
    for record, xray in _lab_results(records, ["xray"]):
        if record.created_at < window_start or not xray.additional_views_suggested:
            continue
        abnormal_finding = any(
            str(finding.get("significance", "")).lower() in ABNORMAL_FINDINGS for finding in xray.findings
        )
        impression = xray.overall_impression or "normal"
        if not abnormal_finding and impression == "normal":
            continue
        key = imaging_followup_key(record.id)
        if is_duplicate(existing + alerts, "imaging_followup", key, now):
            continue
        views = ", ".join(xray.additional_views_suggested)
        alerts.append(
            _new_alert(
                dog,
                "imaging_followup",
                key,
                title="X-ray follow-up suggested",
                message=f"The recent X-ray showed findings worth a closer look. Additional views suggested: {views}.",
                priority="high" if impression in URGENT_IMPRESSIONS else "medium",
                now=now,
                analysis_id=record.id,
                overall_impression=impression,
                additional_views=list(xray.additional_views_suggested),
            )
        )
    return alerts


def _critical_markers(result: LabAssessment) -> List[str]:
    markers = [marker.name for marker in result.marker_values() if marker.status == "critical"]
    for finding in result.findings:
        if str(finding.get("significance", "")).lower() == "critical":
            markers.append(str(finding.get("structure") or "Unspecified finding"))
    return markers


def _abnormal_lab_alerts(dog: DogProfile, records: List[AnalysisRecord], existing: List[Alert], now: datetime) -> List[Alert]:
    window_start = now - timedelta(days=ABNORMAL_LAB_WINDOW_DAYS)
    alerts: List[Alert] = []
    for record, result in _lab_results(records, ["blood_work", "urinalysis", "lab", "xray"]):
        if record.created_at < window_start:
            continue
        assessment = result.overall_assessment or ""
        impression = result.overall_impression or ""
        if assessment not in URGENT_ASSESSMENTS and impression not in URGENT_IMPRESSIONS:
            continue
        key = abnormal_lab_key(record.id)
        if is_duplicate(existing + alerts, "abnormal_lab", key, now):
            continue

        critical = _critical_markers(result)
        label = "X-ray" if record.kind == "xray" else "Lab result"
        if critical:
            message = f"{label} needs prompt veterinary review. Critical findings: {', '.join(critical)}."
        else:
            message = f"{label} was assessed as {assessment or impression}. Contact your vet to review it."
        alerts.append(
            _new_alert(
                dog,
                "abnormal_lab",
                key,
                title=f"Abnormal {label.lower()} needs attention",
                message=message,
                priority="high",
                now=now,
                analysis_id=record.id,
                kind=record.kind,
                critical_markers=critical,
            )
        )
    return alerts


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def generate_alerts(
    dog: Optional[DogProfile],
    pet_facts: Optional[Iterable[Fact]] = None,
    patterns: Optional[Iterable[Pattern]] = None,
    existing_alerts: Optional[Iterable[Alert]] = None,
    lab_analyses: Optional[Iterable[AnalysisRecord]] = None,
    now: Optional[datetime] = None,
    risk_lookup: Callable[[Optional[str]], List[BreedRisk]] = breed_risks.lookup,
) -> List[Alert]:
    """Evaluate every rule and return the new alerts, highest priority first."""
    if dog is None:
        return []
    current = as_utc(now or utc_now())
    facts = list(pet_facts or [])
    detected = list(patterns or [])
    records = list(lab_analyses or [])
    known: List[Alert] = list(existing_alerts or [])

    new_alerts: List[Alert] = []

    def collect(produced: List[Alert]) -> None:
        new_alerts.extend(produced)
        known.extend(produced)

    collect(_breed_risk_alerts(dog, known, current, risk_lookup))
    collect(_symptom_pattern_alerts(dog, detected, known, current))
    collect(_vaccination_alerts(dog, known, current))
    collect(_weight_trend_alerts(dog, facts, known, current))
    collect(_lab_trend_alerts(dog, records, known, current))
    collect(_imaging_followup_alerts(dog, records, known, current))
    collect(_abnormal_lab_alerts(dog, records, known, current))

    new_alerts.sort(key=lambda alert: priority_rank(alert.priority), reverse=True)
    return new_alerts


def dismiss_alert(alerts: Optional[Iterable[Alert]], alert_id: Optional[str], now: Optional[datetime] = None) -> List[Alert]:
    rows = list(alerts or [])
    if not alert_id:
        return rows
    dismissed_at = as_utc(now or utc_now())
    return [
        alert.model_copy(update={"status": "dismissed", "dismissed_at": dismissed_at})
        if alert.id == alert_id and alert.status != "dismissed"
        else alert
        for alert in rows
    ]


def snooze_alert(
    alerts: Optional[Iterable[Alert]],
    alert_id: Optional[str],
    days: float,
    now: Optional[datetime] = None,
) -> List[Alert]:
    rows = list(alerts or [])
    if not alert_id:
        return rows
    snooze_until = as_utc(now or utc_now()) + timedelta(days=days)
    return [
        alert.model_copy(update={"status": "snoozed", "snooze_until": snooze_until}) if alert.id == alert_id else alert
        for alert in rows
    ]
