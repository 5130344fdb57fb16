import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union
from uuid import uuid4

from pawsy.models import (
    Alert,
    AnalysisRecord,
    AssessmentError,
    ChatAssessment,
    DogProfile,
    Fact,
    FactSource,
    LabAssessment,
    Pattern,
    PhotoAssessment,
    PinSuggestion,
    as_utc,
    utc_now,
)
from pawsy.services import alert_engine, fact_extractor, pattern_detector
from pawsy.services.assessment_service import AssessmentService, lab_kind
from pawsy.services.record_store import RecordStore, SqliteRecordStore

logger = logging.getLogger(__name__)

LAB_KINDS = ("blood_work", "xray", "urinalysis", "lab")
PIN_SEVERITIES = {"moderate", "severe"}

AssessmentT = TypeVar("AssessmentT", ChatAssessment, PhotoAssessment, LabAssessment)


def detect_lab_kind(result: LabAssessment, lab_type: Optional[str] = None) -> str:
    if result.is_xray:
        return "xray"
    if result.is_blood_work:
        return "blood_work"
    if result.is_urinalysis:
        return "urinalysis"
    return lab_kind(lab_type)


class AnalysisOrchestrator:
    """Runs one analysis event through AI assessment, fact extraction, pattern detection and alerting.

    Calls for the same dog must be serialized by the host; the orchestrator
    performs no locking of its own and each persistence call stands alone.
    """

    def __init__(
        self,
        assessment_service: Optional[Any] = None,
        record_store: Optional[RecordStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.assessment_service = assessment_service or AssessmentService()
        if record_store is None:
            default_db_path = str(Path(__file__).resolve().parents[2] / "data" / "pawsy.sqlite3")
            record_store = SqliteRecordStore(db_path=os.getenv("PAWSY_DB_PATH", default_db_path))
        self.record_store = record_store
        self.clock = clock
        self.pattern_threshold = self._read_int_env("PATTERN_THRESHOLD", pattern_detector.DEFAULT_THRESHOLD)
        self.pattern_window_days = self._read_int_env("PATTERN_WINDOW_DAYS", pattern_detector.DEFAULT_WINDOW_DAYS)
        self.telemetry_enabled = self._read_bool_env("PIPELINE_TELEMETRY_ENABLED", True)

    @staticmethod
    def _read_bool_env(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None:
            return default
        return raw.strip().lower() not in {"0", "false", "no", "off"}

    @staticmethod
    def _read_int_env(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            value = int(raw.strip())
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", name, raw)
            return default
        return value if value > 0 else default

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_chat_analysis(
        self,
        dog: DogProfile,
        message: str,
        history: Optional[List[Dict[str, str]]] = None,
        session_id: Optional[str] = None,
    ) -> Union[ChatAssessment, AssessmentError]:
        result = self.assessment_service.chat(dog, message, history or [])
        if isinstance(result, AssessmentError):
            return result

        now = as_utc(self.clock())
        message_id = result.message_id or f"msg_{uuid4().hex}"
        record = self._save_analysis(dog, "chat", result, now, payload_updates={"message_id": message_id})
        facts = fact_extractor.extract_from_chat(result, dog.id, session_id, message_id, now=now)
        return self._finish(dog, record, result, facts, now)

    def run_photo_analysis(
        self,
        dog: DogProfile,
        image_data: str,
        body_area: str = "",
        description: str = "",
        mime_type: str = "image/jpeg",
    ) -> Union[PhotoAssessment, AssessmentError]:
        result = self.assessment_service.analyze_photo(
            image_data, dog, body_area=body_area, description=description, mime_type=mime_type
        )
        if isinstance(result, AssessmentError):
            return result

        now = as_utc(self.clock())
        observed = result
        if body_area and not result.body_area:
            observed = result.model_copy(update={"body_area": body_area})
        record = self._save_analysis(
            dog, "photo", observed, now, body_area=body_area or None, description=description or None
        )
        facts = fact_extractor.extract_from_photo(observed, dog.id, analysis_id=record.id, now=now)
        return self._finish(dog, record, result, facts, now)

    def run_lab_analysis(
        self,
        dog: DogProfile,
        image_data: str,
        lab_type: str = "",
        notes: str = "",
        mime_type: str = "image/jpeg",
    ) -> Union[LabAssessment, AssessmentError]:
        result = self.assessment_service.analyze_lab(image_data, dog, lab_type=lab_type, notes=notes, mime_type=mime_type)
        if isinstance(result, AssessmentError):
            return result

        now = as_utc(self.clock())
        kind = detect_lab_kind(result, lab_type)
        record = self._save_analysis(dog, kind, result, now, lab_type=lab_type or None, notes=notes or None)
        facts = fact_extractor.extract_from_lab(result, dog.id, analysis_id=record.id, now=now)
        return self._finish(dog, record, result, facts, now)

    def record_weight(self, dog: DogProfile, weight: float, measured_at: Optional[datetime] = None) -> List[Alert]:
        """Store a manual weight reading and return any alerts it triggers."""
        now = as_utc(self.clock())
        occurred_at = as_utc(measured_at) if measured_at else now
        fact = Fact(
            id=fact_extractor.new_fact_id(),
            dog_id=dog.id,
            fact=f"Weight: {weight:g}",
            category="weight",
            tags=["weight"],
            severity="mild",
            occurred_at=occurred_at,
            created_at=now,
            source=FactSource(type="manual"),
            value=float(weight),
        )
        self.record_store.save_fact(dog.id, fact)
        facts = self.record_store.get_facts(dog.id)
        patterns = self._detect_patterns(facts, now)
        new_alerts = self._refresh_alerts(dog, facts, patterns, now)
        self._emit_pipeline_telemetry(
            dog_id=dog.id,
            kind="weight",
            new_facts=1,
            updated_facts=0,
            patterns=len(patterns),
            new_alerts=len(new_alerts),
            pinned=False,
        )
        return new_alerts

    def dismiss(self, dog_id: str, alert_id: str) -> Optional[Alert]:
        return self._transition(dog_id, alert_id, lambda alerts, now: alert_engine.dismiss_alert(alerts, alert_id, now))

    def snooze(self, dog_id: str, alert_id: str, days: float) -> Optional[Alert]:
        return self._transition(dog_id, alert_id, lambda alerts, now: alert_engine.snooze_alert(alerts, alert_id, days, now))

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _save_analysis(
        self,
        dog: DogProfile,
        kind: str,
        result: Any,
        now: datetime,
        payload_updates: Optional[Dict[str, Any]] = None,
        **context: Any,
    ) -> AnalysisRecord:
        payload = result.model_dump(mode="json", exclude={"pin_suggestion"})
        payload.update(payload_updates or {})
        record = AnalysisRecord(
            id=f"analysis_{uuid4().hex}",
            dog_id=dog.id,
            kind=kind,  # type: ignore[arg-type]
            created_at=now,
            payload=payload,
            **context,
        )
        self.record_store.save_analysis(dog.id, record)
        return record

    def _finish(
        self,
        dog: DogProfile,
        record: AnalysisRecord,
        result: AssessmentT,
        extracted: List[Fact],
        now: datetime,
    ) -> AssessmentT:
        new_facts, updated_facts, all_facts = self._merge_and_save_facts(dog.id, extracted)
        patterns = self._detect_patterns(all_facts, now)
        new_alerts = self._refresh_alerts(dog, all_facts, patterns, now)

        pin = self._pin_suggestion(new_facts)
        if pin is not None:
            result = result.model_copy(update={"pin_suggestion": pin})

        self._emit_pipeline_telemetry(
            dog_id=dog.id,
            kind=record.kind,
            new_facts=len(new_facts),
            updated_facts=len(updated_facts),
            patterns=len(patterns),
            new_alerts=len(new_alerts),
            pinned=pin is not None,
        )
        return result

    def _merge_and_save_facts(self, dog_id: str, extracted: List[Fact]) -> Tuple[List[Fact], List[Fact], List[Fact]]:
        existing = self.record_store.get_facts(dog_id)
        stored_by_id = {fact.id: fact for fact in existing}
        merged = fact_extractor.merge_facts(extracted, existing)

        new_facts: List[Fact] = []
        updated_facts: List[Fact] = []
        for fact in merged:
            stored = stored_by_id.get(fact.id)
            if stored is None:
                new_facts.append(fact)
            elif stored != fact:
                updated_facts.append(fact)

        for fact in [*new_facts, *updated_facts]:
            self.record_store.save_fact(dog_id, fact)
        return new_facts, updated_facts, merged

    def _detect_patterns(self, facts: List[Fact], now: datetime) -> List[Pattern]:
        return pattern_detector.detect_patterns(
            facts, threshold=self.pattern_threshold, window_days=self.pattern_window_days, now=now
        )

    def _refresh_alerts(self, dog: DogProfile, facts: List[Fact], patterns: List[Pattern], now: datetime) -> List[Alert]:
        new_alerts = alert_engine.generate_alerts(
            dog,
            pet_facts=facts,
            patterns=patterns,
            existing_alerts=self.record_store.get_alerts(dog.id),
            lab_analyses=self.record_store.get_analyses(dog.id, kinds=LAB_KINDS),
            now=now,
        )
        for alert in new_alerts:
            self.record_store.save_alert(dog.id, alert)
        return new_alerts

    def _pin_suggestion(self, new_facts: List[Fact]) -> Optional[PinSuggestion]:
        for fact in new_facts:
            if fact.severity in PIN_SEVERITIES and not fact.pinned:
                return PinSuggestion(fact_id=fact.id)
        return None

    def _transition(
        self,
        dog_id: str,
        alert_id: str,
        apply: Callable[[List[Alert], datetime], List[Alert]],
    ) -> Optional[Alert]:
        alerts = self.record_store.get_alerts(dog_id)
        before = {alert.id: alert for alert in alerts}
        changed: Optional[Alert] = None
        for alert in apply(alerts, as_utc(self.clock())):
            if alert.id == alert_id:
                changed = alert
                if before.get(alert.id) != alert:
                    self.record_store.save_alert(dog_id, alert)
        return changed

    def _emit_pipeline_telemetry(
        self,
        *,
        dog_id: str,
        kind: str,
        new_facts: int,
        updated_facts: int,
        patterns: int,
        new_alerts: int,
        pinned: bool,
    ) -> None:
        if not self.telemetry_enabled:
            return
        payload = {
            "dog_id": dog_id,
            "kind": kind,
            "new_facts": new_facts,
            "updated_facts": updated_facts,
            "pattern_count": patterns,
            "new_alerts": new_alerts,
            "pin_suggested": pinned,
        }
        logger.info("pipeline_telemetry=%s", json.dumps(payload, sort_keys=True))
