"""Turn AI assessment payloads into normalised pet facts.

Every extractor is a pure function: malformed or partial payloads produce
fewer facts (possibly none) rather than errors. ``merge_facts`` folds a new
batch into the stored history so that one health event within a day is kept
as a single record.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from pawsy.models import (
    ChatAssessment,
    Fact,
    FactSource,
    LabAssessment,
    PhotoAssessment,
    as_utc,
    parse_assessment,
    utc_now,
)

DEDUP_WINDOW = timedelta(hours=24)

URGENCY_SEVERITY = {
    "emergency": "severe",
    "urgent": "severe",
    "moderate": "moderate",
    "low": "mild",
    "none": "mild",
}

LAB_ASSESSMENT_SEVERITY = {
    "concerning": "severe",
    "needs_attention": "moderate",
    "normal": "mild",
}


def new_fact_id() -> str:
    return f"fact_{uuid4().hex}"


def map_urgency_severity(urgency_level: Optional[str]) -> str:
    if not urgency_level:
        return "mild"
    return URGENCY_SEVERITY.get(urgency_level.strip().lower(), "mild")


def map_lab_severity(overall_assessment: Optional[str]) -> str:
    # Panel-level: every abnormal marker inherits the panel's assessment.
    if not overall_assessment:
        return "moderate"
    return LAB_ASSESSMENT_SEVERITY.get(overall_assessment.strip().lower(), "moderate")


def _build_facts(
    *,
    dog_id: str,
    symptoms: List[str],
    conditions: List[str],
    actions: List[str],
    severity: str,
    source: FactSource,
    extra_tags: List[str],
    now: datetime,
) -> List[Fact]:
    facts: List[Fact] = []
    # Symptoms win over conditions so one health event is not counted twice.
    if symptoms:
        for symptom in symptoms:
            facts.append(
                Fact(
                    id=new_fact_id(),
                    dog_id=dog_id,
                    fact=symptom,
                    category="symptom",
                    tags=[symptom.lower(), *extra_tags],
                    severity=severity,
                    occurred_at=now,
                    created_at=now,
                    source=source,
                    possible_conditions=list(conditions),
                    recommended_actions=list(actions),
                )
            )
        return facts

    for condition in conditions:
        facts.append(
            Fact(
                id=new_fact_id(),
                dog_id=dog_id,
                fact=condition,
                category="condition",
                tags=[condition.lower(), *extra_tags],
                severity=severity,
                occurred_at=now,
                created_at=now,
                source=source,
                possible_conditions=[condition],
                recommended_actions=list(actions),
            )
        )
    return facts


def extract_from_chat(
    metadata: Any,
    dog_id: str,
    session_id: Optional[str] = None,
    message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Fact]:
    if not metadata:
        return []
    assessment = parse_assessment(ChatAssessment, metadata)
    return _build_facts(
        dog_id=dog_id,
        symptoms=assessment.symptoms_mentioned,
        conditions=assessment.possible_conditions,
        actions=assessment.recommended_actions,
        severity=map_urgency_severity(assessment.urgency_level),
        source=FactSource(type="chat", session_id=session_id, message_id=message_id),
        extra_tags=[],
        now=as_utc(now or utc_now()),
    )


def extract_from_photo(
    result: Any,
    dog_id: str,
    analysis_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Fact]:
    if not result:
        return []
    assessment = parse_assessment(PhotoAssessment, result)
    extra_tags = [assessment.body_area.lower()] if assessment.body_area else []
    return _build_facts(
        dog_id=dog_id,
        symptoms=assessment.visible_symptoms,
        conditions=assessment.possible_conditions,
        actions=assessment.recommended_actions,
        severity=map_urgency_severity(assessment.urgency_level),
        source=FactSource(type="photo", analysis_id=analysis_id),
        extra_tags=extra_tags,
        now=as_utc(now or utc_now()),
    )


def extract_from_lab(
    result: Any,
    dog_id: str,
    analysis_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Fact]:
    if not result:
        return []
    assessment = parse_assessment(LabAssessment, result)
    severity = map_lab_severity(assessment.overall_assessment)
    timestamp = as_utc(now or utc_now())

    facts: List[Fact] = []
    for marker in assessment.marker_values():
        if marker.status == "normal":
            continue
        interpretation = marker.interpretation or f"{marker.name} is {marker.status}"
        facts.append(
            Fact(
                id=new_fact_id(),
                dog_id=dog_id,
                fact=f"{marker.name}: {marker.value} ({marker.status}) - {interpretation}",
                category="lab_result",
                tags=[marker.name.lower(), marker.status],
                severity=severity,
                occurred_at=timestamp,
                created_at=timestamp,
                source=FactSource(type="lab", analysis_id=analysis_id),
                possible_conditions=list(assessment.possible_conditions),
                recommended_actions=list(assessment.recommended_actions),
                lab_value=marker,
            )
        )
    return facts


def extract_facts_deep(messages: Iterable[Dict[str, Any]], dog_id: str, session_id: str) -> List[Fact]:
    """Re-read a whole chat session and return its facts deduplicated within the session."""
    collected: List[Fact] = []
    for message in messages or []:
        if not isinstance(message, dict) or not message.get("metadata"):
            continue
        message_id = message.get("id") or message.get("message_id") or uuid4().hex
        timestamp = message.get("timestamp") or message.get("created_at")
        facts = extract_from_chat(message["metadata"], dog_id, session_id, str(message_id))
        if timestamp:
            facts = [
                fact.model_copy(update={"occurred_at": _parse_timestamp(timestamp, fact.occurred_at)})
                for fact in facts
            ]
        collected.extend(facts)
    return merge_facts(collected, [])


def _parse_timestamp(value: Any, default: datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return default


def merge_facts(new_facts: Iterable[Fact], existing_facts: Iterable[Fact]) -> List[Fact]:
    """Fold ``new_facts`` into ``existing_facts``.

    A new fact matching a kept fact on (primary tag, category) within 24 hours
    updates that fact's severity, context lists and occurrence time when it is
    not older; otherwise it is appended. Inputs are never mutated.
    """
    result: List[Fact] = list(existing_facts or [])
    for new_fact in new_facts or []:
        primary_tag = new_fact.primary_tag
        if not primary_tag:
            result.append(new_fact)
            continue

        duplicate_index = -1
        for index, kept in enumerate(result):
            if kept.primary_tag != primary_tag or kept.category != new_fact.category:
                continue
            if abs(new_fact.occurred_at - kept.occurred_at) < DEDUP_WINDOW:
                duplicate_index = index
                break

        if duplicate_index < 0:
            result.append(new_fact)
            continue

        kept = result[duplicate_index]
        if new_fact.occurred_at >= kept.occurred_at:
            result[duplicate_index] = kept.model_copy(
                update={
                    "severity": new_fact.severity,
                    "possible_conditions": list(new_fact.possible_conditions),
                    "recommended_actions": list(new_fact.recommended_actions),
                    "occurred_at": new_fact.occurred_at,
                }
            )
    return result
