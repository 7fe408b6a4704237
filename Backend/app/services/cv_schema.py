"""
cv_schema.py
~~~~~~~~~~~~
Schemas for the structured CV and registration records, and the parser that
turns a model's raw text reply into validated data.

Model output is untrusted: it may be wrapped in markdown fences, may not be
JSON at all, or may be missing whole sections. Nothing leaves this module
unless it parsed, carried every required top-level key and validated.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# ─── Exceptions ──────────────────────────────────────────────────────────────
class SchemaValidationError(ValueError):
    """Raised when model output is not well-formed structured data."""

# ─── Shared helpers ──────────────────────────────────────────────────────────
class _Lenient(BaseModel):
    """Unknown keys are kept; the model may add fields we don't render."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v is not None)
    return str(value).strip()

def _as_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [part.strip() for part in re.split(r"[,;\n]", value) if part.strip()]
    if not isinstance(value, (list, tuple)):
        return [str(value).strip()]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]

# ─── Structured CV ───────────────────────────────────────────────────────────
class PersonalDetails(_Lenient):
    nationality: str = ""
    languages: list[str] = Field(default_factory=list)
    dob: str = ""
    maritalStatus: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""

    @field_validator(
        "nationality", "dob", "maritalStatus", "email", "phone", "location", mode="before"
    )
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("languages", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)

class ExperienceEntry(_Lenient):
    role: str = ""
    company: str = ""
    location: str = ""
    startDate: str = ""
    endDate: str = ""
    bullets: list[str] = Field(default_factory=list)

    @field_validator("role", "company", "location", "startDate", "endDate", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("bullets", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)

class EducationEntry(_Lenient):
    program: str = ""
    institution: str = ""
    startYear: str = ""
    endYear: str = ""

    @field_validator("program", "institution", "startYear", "endYear", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

class StructuredCV(_Lenient):
    fullName: str
    jobTitle: str = ""
    personalDetails: PersonalDetails = Field(default_factory=PersonalDetails)
    profile: str = ""
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)

    @field_validator("fullName", "jobTitle", "profile", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("skills", "interests", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)

CV_REQUIRED_KEYS = ("fullName", "personalDetails", "experience", "education", "skills")

# ─── Structured Registration ─────────────────────────────────────────────────
class EmergencyContact(_Lenient):
    name: str = ""
    phone: str = ""
    relationship: str = ""

    @field_validator("name", "phone", "relationship", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

class StructuredRegistration(_Lenient):
    fullName: str
    email: str = ""
    phone: str = ""
    dob: str = ""
    nationality: str = ""
    gender: str = ""
    preferredPronouns: str = ""
    languages: list[str] = Field(default_factory=list)
    nationalInsuranceNumber: str = ""
    utrNumber: str = ""
    maritalStatus: str = ""
    dependants: str = ""
    workInUk: str = ""
    currentDBS: str = ""
    criminalRecord: str = ""
    smokesVapes: str = ""
    workWithPets: str = ""
    drivingLicence: str = ""
    licenceClean: str = ""
    positionsApplyingFor: str = ""
    yearlyDesiredSalary: str = ""
    currentNoticePeriod: str = ""
    preferredWorkLocation: str = ""
    liveInOrOut: str = ""
    location: str = ""
    emergencyContactDetails: EmergencyContact = Field(default_factory=EmergencyContact)

    @field_validator(
        "fullName", "email", "phone", "dob", "nationality", "gender", "preferredPronouns",
        "nationalInsuranceNumber", "utrNumber", "maritalStatus", "dependants", "workInUk",
        "currentDBS", "criminalRecord", "smokesVapes", "workWithPets", "drivingLicence",
        "licenceClean", "positionsApplyingFor", "yearlyDesiredSalary", "currentNoticePeriod",
        "preferredWorkLocation", "liveInOrOut", "location",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("languages", mode="before")
    @classmethod
    def coerce_list(cls, value: Any) -> list[str]:
        return _as_list(value)

REGISTRATION_REQUIRED_KEYS = ("fullName", "email", "phone")

# ─── Parsing ─────────────────────────────────────────────────────────────────
_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

M = TypeVar("M", bound=BaseModel)

def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    return _FENCE.sub("", text.strip()).strip()

def parse_model_json(
    text: str | None,
    schema: Type[M],
    required_keys: tuple[str, ...],
    label: str,
) -> dict[str, Any]:
    """
    Parse and validate one structured reply.

    Returns a plain JSON-ready dict. Raises SchemaValidationError with a
    message naming `label` on any problem.
    """
    if not text or not text.strip():
        raise SchemaValidationError(f"{label}: model returned an empty response")

    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise SchemaValidationError(f"{label}: response is not valid JSON ({e.msg})") from e

    if not isinstance(payload, dict):
        raise SchemaValidationError(
            f"{label}: expected a JSON object, got {type(payload).__name__}"
        )

    missing = [key for key in required_keys if key not in payload]
    if missing:
        raise SchemaValidationError(f"{label}: missing required keys {missing}")

    try:
        model = schema.model_validate(payload)
    except ValidationError as e:
        raise SchemaValidationError(f"{label}: {e.error_count()} invalid field(s): {e.errors()[0]['msg']}") from e

    logger.debug("%s validated — keys: %s", label, list(payload.keys()))
    return model.model_dump(mode="json")

def parse_structured_cv(text: str | None) -> dict[str, Any]:
    return parse_model_json(text, StructuredCV, CV_REQUIRED_KEYS, "CV extraction")

def parse_structured_registration(text: str | None) -> dict[str, Any]:
    return parse_model_json(
        text, StructuredRegistration, REGISTRATION_REQUIRED_KEYS, "Registration extraction"
    )

def is_complete_cv(data: Any) -> bool:
    """Re-check a dict that is about to be persisted."""
    if not isinstance(data, dict) or any(key not in data for key in CV_REQUIRED_KEYS):
        return False
    try:
        StructuredCV.model_validate(data)
    except ValidationError:
        return False
    return True

def is_complete_registration(data: Any) -> bool:
    if not isinstance(data, dict) or any(key not in data for key in REGISTRATION_REQUIRED_KEYS):
        return False
    try:
        StructuredRegistration.model_validate(data)
    except ValidationError:
        return False
    return True
