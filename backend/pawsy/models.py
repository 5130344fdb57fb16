import logging
from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

FactCategory = Literal["symptom", "condition", "lab_result", "weight"]
FactSeverity = Literal["mild", "moderate", "severe"]
AlertType = Literal[
    "breed_risk",
    "symptom_pattern",
    "vaccination_due",
    "weight_trend",
    "lab_trend",
    "imaging_followup",
    "abnormal_lab",
]
AlertPriority = Literal["high", "medium", "low"]
AlertStatus = Literal["active", "snoozed", "dismissed"]
AnalysisKind = Literal["chat", "photo", "blood_work", "xray", "urinalysis", "lab"]
ErrorType = Literal["rate_limit", "safety_block", "auth_error", "timeout", "unknown"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


# ---------------------------------------------------------------------------
# Dog profile (owned by the host application)
# ---------------------------------------------------------------------------


class Vaccination(BaseModel):
    name: str = "Vaccination"
    next_due_date: Optional[UtcDatetime] = None

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return _optional_text(value) or "Vaccination"

    @field_validator("next_due_date", mode="before")
    @classmethod
    def _coerce_due_date(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            try:
                value = date.fromisoformat(value.strip())
            except ValueError:
                return None
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if value in ("", None):
            return None
        return value


class DogProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: Optional[str] = None
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    age_years: Optional[float] = None
    age: Optional[float] = None
    medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    vaccinations: List[Vaccination] = Field(default_factory=list)

    def age_in_years(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.age_years is not None:
            return self.age_years
        if self.age is not None:
            return self.age
        if self.date_of_birth is None:
            return None
        current = as_utc(now or utc_now()).date()
        return (current - self.date_of_birth).days / 365.25


# ---------------------------------------------------------------------------
# Facts, patterns and alerts
# ---------------------------------------------------------------------------


class FactSource(BaseModel):
    type: Literal["chat", "photo", "lab", "manual"]
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    analysis_id: Optional[str] = None


class LabValue(BaseModel):
    name: str = "Unknown marker"
    value: Optional[str] = None
    unit: Optional[str] = None
    reference_range: Optional[str] = None
    status: str = "normal"
    interpretation: Optional[str] = None

    @field_validator("value", "unit", "reference_range", "interpretation", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return _optional_text(value) or "Unknown marker"

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> str:
        text = _optional_text(value)
        return text.lower() if text else "normal"


class Fact(BaseModel):
    id: str
    dog_id: str
    fact: str
    category: FactCategory
    tags: List[str] = Field(default_factory=list)
    severity: FactSeverity = "mild"
    status: Literal["active", "resolved"] = "active"
    occurred_at: UtcDatetime
    created_at: UtcDatetime
    source: FactSource
    possible_conditions: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    resolved_at: Optional[UtcDatetime] = None
    lab_value: Optional[LabValue] = None
    value: Optional[float] = None
    pinned: bool = False

    @property
    def primary_tag(self) -> Optional[str]:
        if not self.tags:
            return None
        return self.tags[0].strip().lower() or None


class Pattern(BaseModel):
    tag: str
    count: int
    severity: str
    first_seen: UtcDatetime
    last_seen: UtcDatetime
    fact_ids: List[str] = Field(default_factory=list)
    description: str


class Alert(BaseModel):
    id: str
    dog_id: str
    type: AlertType
    title: str
    message: str
    priority: AlertPriority
    status: AlertStatus = "active"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime
    dismissed_at: Optional[UtcDatetime] = None
    snooze_until: Optional[UtcDatetime] = None

    @property
    def key(self) -> Optional[str]:
        value = self.metadata.get("key")
        return str(value) if value is not None else None


class BreedRisk(BaseModel):
    name: str
    age_min: float
    age_max: float
    severity: str
    description: str


class AnalysisRecord(BaseModel):
    id: str
    dog_id: str
    kind: AnalysisKind
    created_at: UtcDatetime
    payload: Dict[str, Any] = Field(default_factory=dict)
    body_area: Optional[str] = None
    description: Optional[str] = None
    lab_type: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# AI assessment payloads
# ---------------------------------------------------------------------------


class PinSuggestion(BaseModel):
    fact_id: str
    message: str = "This seems important. Want me to always remember this?"


class AssessmentError(BaseModel):
    error: Literal[True] = True
    error_type: ErrorType = "unknown"
    message: str = "Something went wrong. Please try again."


class _Assessment(BaseModel):
    model_config = ConfigDict(extra="allow")

    error: Literal[False] = False
    possible_conditions: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    pin_suggestion: Optional[PinSuggestion] = None

    @field_validator("error", mode="before")
    @classmethod
    def _never_error(cls, value: Any) -> bool:
        return False

    @field_validator("possible_conditions", "recommended_actions", mode="before")
    @classmethod
    def _coerce_context_lists(cls, value: Any) -> List[str]:
        return _str_list(value)

    @field_validator("pin_suggestion", mode="before")
    @classmethod
    def _coerce_pin(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, PinSuggestion)) else None


class ChatAssessment(_Assessment):
    message: str = ""
    follow_up_questions: List[str] = Field(default_factory=list)
    concerns_detected: bool = False
    suggested_action: str = "continue_chat"
    symptoms_mentioned: List[str] = Field(default_factory=list)
    urgency_level: Optional[str] = None
    should_see_vet: bool = False
    message_id: Optional[str] = None

    @field_validator("follow_up_questions", "symptoms_mentioned", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return _str_list(value)

    @field_validator("urgency_level", "message_id", mode="before")
    @classmethod
    def _coerce_optional(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, value: Any) -> str:
        return _optional_text(value) or ""

    @field_validator("suggested_action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> str:
        return _optional_text(value) or "continue_chat"

    @field_validator("concerns_detected", "should_see_vet", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> bool:
        return _flag(value)


class PhotoAssessment(_Assessment):
    urgency_level: Optional[str] = None
    confidence: Optional[str] = None
    visible_symptoms: List[str] = Field(default_factory=list)
    should_see_vet: bool = False
    vet_urgency: Optional[str] = None
    home_care_tips: List[str] = Field(default_factory=list)
    summary: str = ""
    body_area: Optional[str] = None

    @field_validator("visible_symptoms", "home_care_tips", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return _str_list(value)

    @field_validator("urgency_level", "confidence", "vet_urgency", "body_area", mode="before")
    @classmethod
    def _coerce_optional(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value: Any) -> str:
        return _optional_text(value) or ""

    @field_validator("should_see_vet", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> bool:
        return _flag(value)


class LabAssessment(_Assessment):
    is_blood_work: bool = False
    is_xray: bool = False
    is_urinalysis: bool = False
    overall_assessment: Optional[str] = None
    overall_impression: Optional[str] = None
    values: List[LabValue] = Field(default_factory=list)
    findings: List[Dict[str, Any]] = Field(default_factory=list)
    additional_views_suggested: List[str] = Field(default_factory=list)
    differential_diagnoses: List[str] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    summary: str = ""
    confidence: Optional[str] = None

    @field_validator("is_blood_work", "is_xray", "is_urinalysis", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> bool:
        return _flag(value)

    @field_validator("overall_assessment", "overall_impression", "confidence", mode="before")
    @classmethod
    def _coerce_optional(cls, value: Any) -> Optional[str]:
        text = _optional_text(value)
        return text.lower() if text else None

    @field_validator("additional_views_suggested", "differential_diagnoses", "key_findings", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return _str_list(value)

    @field_validator("findings", mode="before")
    @classmethod
    def _coerce_findings(cls, value: Any) -> List[Dict[str, Any]]:
        return _dict_list(value)

    @field_validator("values", mode="before")
    @classmethod
    def _coerce_values(cls, value: Any) -> List[Dict[str, Any]]:
        return _dict_list(value)

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value: Any) -> str:
        return _optional_text(value) or ""

    def marker_values(self) -> List[LabValue]:
        """Panel values plus urinalysis dipstick markers, as one list."""
        markers = list(self.values)
        extra = self.model_extra or {}
        for item in _dict_list(extra.get("chemical_analysis")):
            markers.append(
                LabValue.model_validate(
                    {
                        "name": item.get("marker"),
                        "value": item.get("value"),
                        "unit": item.get("unit"),
                        "status": item.get("status"),
                        "interpretation": item.get("interpretation"),
                    }
                )
            )
        return markers


AssessmentT = TypeVar("AssessmentT", bound=_Assessment)


def parse_assessment(model: Type[AssessmentT], payload: Any) -> AssessmentT:
    """Validate a raw AI payload, degrading to an all-defaults model instead of raising."""
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, dict):
        return model()
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Discarding malformed %s payload: %s", model.__name__, exc.error_count())
        return model()
