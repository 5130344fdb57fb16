import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import openai
from openai import OpenAI

from pawsy.models import (
    AssessmentError,
    ChatAssessment,
    DogProfile,
    LabAssessment,
    PhotoAssessment,
    parse_assessment,
    utc_now,
)

logger = logging.getLogger(__name__)

ChatResult = Union[ChatAssessment, AssessmentError]
PhotoResult = Union[PhotoAssessment, AssessmentError]
LabResult = Union[LabAssessment, AssessmentError]

ERROR_MESSAGES = {
    "safety_block": (
        "I couldn't analyze this content due to safety guidelines. "
        "Please try a different photo or rephrase your question."
    ),
    "rate_limit": "I'm receiving too many requests right now. Please wait a moment and try again.",
    "auth_error": "There's an issue with the API configuration. Please check your API key.",
    "timeout": "The analysis took too long to complete. Please try again.",
    "unknown": "Something went wrong. Please try again.",
}

CHAT_FORMAT = (
    "Respond ONLY with a valid JSON object using these fields: "
    "message (string), follow_up_questions (list, max 3), concerns_detected (bool), "
    "suggested_action (continue_chat|upload_photo|see_vet|emergency), symptoms_mentioned (list), "
    "possible_conditions (list), urgency_level (emergency|urgent|moderate|low|none), "
    "recommended_actions (list), should_see_vet (bool)."
)

PHOTO_FORMAT = (
    "Respond ONLY with a valid JSON object using these fields: "
    "urgency_level (emergency|urgent|moderate|low), confidence (high|medium|low), "
    "possible_conditions (list), visible_symptoms (list), recommended_actions (list), "
    "should_see_vet (bool), vet_urgency (immediately|within_24_hours|within_week|routine_checkup|not_required), "
    "home_care_tips (list), summary (string)."
)

XRAY_FORMAT = (
    "Respond ONLY with a valid JSON object using these fields: is_xray (bool), "
    "overall_impression (normal|abnormal_non_urgent|abnormal_urgent|critical), "
    "findings (list of {structure, observation, significance: normal|abnormal|incidental|critical, location}), "
    "differential_diagnoses (list), additional_views_suggested (list), recommended_actions (list), "
    "summary (string), confidence (high|medium|low)."
)

BLOOD_WORK_FORMAT = (
    "Respond ONLY with a valid JSON object using these fields: is_blood_work (bool), "
    "values (list of {name, value, unit, reference_range, status: normal|high|low|critical, interpretation}), "
    "overall_assessment (normal|needs_attention|concerning), key_findings (list), possible_conditions (list), "
    "recommended_actions (list), summary (string), confidence (high|medium|low)."
)

URINALYSIS_FORMAT = (
    "Respond ONLY with a valid JSON object using these fields: is_urinalysis (bool), "
    "chemical_analysis (list of {marker, value, status: normal|abnormal|critical, interpretation}), "
    "overall_assessment (normal|needs_attention|concerning), key_findings (list), possible_conditions (list), "
    "recommended_actions (list), summary (string), confidence (high|medium|low)."
)


def lab_kind(lab_type: Optional[str]) -> str:
    text = (lab_type or "").lower()
    if "x-ray" in text or "xray" in text or "radiograph" in text:
        return "xray"
    if "urin" in text:
        return "urinalysis"
    if "blood" in text or "cbc" in text or "chemistry" in text:
        return "blood_work"
    return "lab"


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(strip_code_fence(text))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def error_result(error_type: str) -> AssessmentError:
    return AssessmentError(error_type=error_type, message=ERROR_MESSAGES[error_type])  # type: ignore[arg-type]


def classify_openai_error(exc: Exception) -> AssessmentError:
    if isinstance(exc, openai.RateLimitError):
        return error_result("rate_limit")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return error_result("auth_error")
    if isinstance(exc, openai.APITimeoutError):
        return error_result("timeout")
    if isinstance(exc, openai.BadRequestError):
        code = str(getattr(exc, "code", "") or "")
        if "content_policy" in code or "content_filter" in code or "safety" in str(exc).lower():
            return error_result("safety_block")
    return error_result("unknown")


class AssessmentService:
    """OpenAI-backed health assessments for chat turns, photos and lab reports."""

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None) -> None:
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
        if client is None:
            api_key = self._load_openai_api_key()
            client = OpenAI(api_key=api_key) if api_key else None
        self.client = client
        self.llm_available = self.client is not None
        if not self.llm_available:
            logger.warning("Assessments disabled: set OPENAI_API_KEY (or OPENAI_API_KEY_FILE).")

    @staticmethod
    def _normalize_env_value(value: str) -> str:
        normalized = value.strip()
        if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in {"'", '"'}:
            normalized = normalized[1:-1].strip()
        return normalized

    def _load_openai_api_key(self) -> str:
        api_key = self._normalize_env_value(os.getenv("OPENAI_API_KEY", ""))

        if not api_key:
            key_file = self._normalize_env_value(os.getenv("OPENAI_API_KEY_FILE", ""))
            if key_file:
                try:
                    api_key = self._normalize_env_value(Path(key_file).read_text(encoding="utf-8"))
                except OSError:
                    logger.warning("OPENAI_API_KEY_FILE is set but unreadable.")

        if api_key.lower() in {"replace-with-openai-key", "your-openai-api-key"}:
            return ""
        return api_key

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def chat(self, dog: DogProfile, message: str, history: Optional[List[Dict[str, str]]] = None) -> ChatResult:
        turns: List[Dict[str, Any]] = [{"role": "system", "content": self._chat_system_prompt(dog)}]
        for turn in self._valid_history(history or []):
            turns.append(turn)
        turns.append({"role": "user", "content": f"{message}\n\n{CHAT_FORMAT}"})

        text = self._complete(turns)
        if isinstance(text, AssessmentError):
            return text
        payload = parse_json_object(text)
        if payload is None:
            # Plain prose still counts as an answer; it just carries no health metadata.
            return ChatAssessment(message=text.strip())
        if "message" not in payload and "response" in payload:
            payload["message"] = payload["response"]
        return parse_assessment(ChatAssessment, payload)

    def analyze_photo(
        self,
        image_data: str,
        dog: DogProfile,
        body_area: str = "",
        description: str = "",
        mime_type: str = "image/jpeg",
    ) -> PhotoResult:
        prompt = (
            f"{self._dog_summary(dog)}\n"
            f"Body area: {body_area or 'not specified'}\n"
            f"Owner description: {description or 'none'}\n"
            "Assess the visible health concern in this photo.\n"
            f"{PHOTO_FORMAT}"
        )
        payload = self._complete_json(self._image_turns(prompt, image_data, mime_type))
        if isinstance(payload, AssessmentError):
            return payload
        if body_area and not payload.get("body_area"):
            payload["body_area"] = body_area
        return parse_assessment(PhotoAssessment, payload)

    def analyze_lab(
        self,
        image_data: str,
        dog: DogProfile,
        lab_type: str = "",
        notes: str = "",
        mime_type: str = "image/jpeg",
    ) -> LabResult:
        kind = lab_kind(lab_type)
        response_format = {
            "xray": XRAY_FORMAT,
            "urinalysis": URINALYSIS_FORMAT,
        }.get(kind, BLOOD_WORK_FORMAT)
        prompt = (
            f"{self._dog_summary(dog)}\n"
            f"Lab type: {lab_type or 'unspecified'}\n"
            f"Owner notes: {notes or 'none'}\n"
            f"Medications: {', '.join(dog.medications) or 'none'}\n"
            "Interpret this veterinary report for the owner.\n"
            f"{response_format}"
        )
        payload = self._complete_json(self._image_turns(prompt, image_data, mime_type))
        if isinstance(payload, AssessmentError):
            return payload
        return parse_assessment(LabAssessment, payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, turns: List[Dict[str, Any]]) -> Union[str, AssessmentError]:
        if not self.client:
            return error_result("auth_error")
        try:
            response = self.client.responses.create(model=self.model, input=turns, temperature=0.2)
        except openai.OpenAIError as exc:
            logger.exception("Assessment request failed")
            return classify_openai_error(exc)
        return getattr(response, "output_text", "") or ""

    def _complete_json(self, turns: List[Dict[str, Any]]) -> Union[Dict[str, Any], AssessmentError]:
        text = self._complete(turns)
        if isinstance(text, AssessmentError):
            return text
        payload = parse_json_object(text)
        if payload is None:
            logger.warning("Assessment response was not a JSON object (%d chars)", len(text))
            return error_result("unknown")
        return payload

    def _image_turns(self, prompt: str, image_data: str, mime_type: str) -> List[Dict[str, Any]]:
        return [
            {
                "role": "system",
                "content": "You are Pawsy, a careful veterinary assistant. Never give a definitive diagnosis.",
            },
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": prompt},
                    {"type": "input_image", "image_url": f"data:{mime_type};base64,{image_data}"},
                ],
            },
        ]

    def _valid_history(self, history: List[Dict[str, str]]) -> List[Dict[str, str]]:
        turns = [
            {"role": turn["role"], "content": str(turn.get("content", ""))}
            for turn in history
            if isinstance(turn, dict) and turn.get("role") in {"user", "assistant"}
        ]
        # A leading assistant turn is the canned welcome message.
        if turns and turns[0]["role"] == "assistant":
            turns = turns[1:]
        return turns

    def _chat_system_prompt(self, dog: DogProfile) -> str:
        return (
            "You are Pawsy, a friendly and knowledgeable AI veterinary assistant for dog owners. "
            "Be warm and practical, flag emergencies clearly, and never replace a veterinarian.\n"
            f"{self._dog_summary(dog)}"
        )

    def _dog_summary(self, dog: DogProfile) -> str:
        age = dog.age_in_years(utc_now())
        age_text = f"{age:.1f} years" if age is not None else "unknown age"
        return (
            f"Dog: {dog.name or 'Unnamed'} ({dog.breed or 'unknown breed'}, {age_text}). "
            f"Known conditions: {', '.join(dog.conditions) or 'none'}. "
            f"Allergies: {', '.join(dog.allergies) or 'none'}."
        )
