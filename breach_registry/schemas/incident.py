# breach_registry/schemas/incident.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, conint, constr, field_validator

from breach_registry.core.errors import ValidationError as RegistryValidationError
from breach_registry.services.deadline import resolve_timezone

# Allowed enums
IncidentStatus = Literal["open", "investigating", "closed"]
IncidentType = Literal[
    "unauthorized_access",
    "malware_ransomware",
    "phishing",
    "device_loss",
    "data_leak",
    "availability",
    "misconfiguration",
    "other",
]
DataCategory = Literal[
    "identifying",
    "contact",
    "financial",
    "health",
    "employment",
    "credentials",
    "biometric",
    "minors",
    "other",
]


def _attach_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored times are naive UTC; say so on the way out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_attach_utc)]


class IncidentFields(BaseModel):
    """
    Reportable content of an Art. 33 breach report.
    Every write sends the full set; each write becomes a new version.
    """

    # 1. Identification
    detected_at: datetime = Field(
        ..., description="When the organization became aware of the breach"
    )
    detection_timezone: constr(strip_whitespace=True, max_length=64) = Field(
        default="UTC", description="IANA zone used to read naive datetimes"
    )
    description: constr(strip_whitespace=True, min_length=1) = Field(
        ..., description="What happened"
    )
    incident_type: Optional[IncidentType] = None
    data_categories: List[DataCategory] = Field(default_factory=list)
    affected_subjects_count: Optional[conint(ge=0)] = None
    affected_records_count: Optional[conint(ge=0)] = None

    # 2. Consequences
    consequences: Optional[str] = None
    probable_risks: Optional[str] = None

    # 3. Measures
    measures_taken: Optional[str] = None
    measures_planned: Optional[str] = None

    # 4. Communication
    authority_notified: bool = False
    authority_notified_at: Optional[datetime] = None
    delay_justification: Optional[str] = None
    subjects_notified: bool = False
    subjects_notified_at: Optional[datetime] = None

    # 5. Follow-up
    resolved_at: Optional[datetime] = None
    status: IncidentStatus = "open"

    # Contact point
    contact_name: Optional[constr(strip_whitespace=True, max_length=100)] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[constr(strip_whitespace=True, max_length=20)] = None

    internal_notes: Optional[str] = None

    @field_validator("detection_timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        if not v:
            return "UTC"
        try:
            resolve_timezone(v)
        except RegistryValidationError:
            raise ValueError(f"'{v}' is not a valid IANA time zone") from None
        return v

    @field_validator("data_categories")
    @classmethod
    def _dedupe_categories(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


class IncidentCreate(IncidentFields):
    organization_id: constr(strip_whitespace=True, min_length=1, max_length=64)


class IncidentUpdate(IncidentFields):
    """Full replacement snapshot; the organization must match the incident's owner."""

    organization_id: constr(strip_whitespace=True, min_length=1, max_length=64)


# ---------------------------
# Read models
# ---------------------------
class IncidentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    internal_id: int
    current_version_number: int
    status: str
    created_at: UtcDatetime
    created_by: str
    updated_at: UtcDatetime


class IncidentVersionOut(IncidentFields):
    model_config = ConfigDict(from_attributes=True)

    id: str
    incident_id: str
    version_number: int
    detected_at: UtcDatetime
    authority_notified_at: Optional[UtcDatetime] = None
    subjects_notified_at: Optional[UtcDatetime] = None
    resolved_at: Optional[UtcDatetime] = None
    detection_timezone: Optional[str] = None
    contact_email: Optional[str] = None
    is_late: bool
    token: str
    created_at: UtcDatetime
    created_by: str


class DeadlineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    detected_at: UtcDatetime
    deadline: UtcDatetime
    notified_at: Optional[UtcDatetime] = None
    is_late: bool
    hours_remaining: Optional[float] = None
    hours_overdue: Optional[float] = None


class IncidentWriteOut(BaseModel):
    success: bool = True
    incident: IncidentOut
    version: IncidentVersionOut
    token: str


class IncidentHistoryOut(BaseModel):
    incident: IncidentOut
    versions: List[IncidentVersionOut]
    deadline: DeadlineOut


class IncidentListItemOut(IncidentOut):
    version_count: int
    latest_version: IncidentVersionOut
    deadline: DeadlineOut


class IncidentStatsOut(BaseModel):
    total: int = 0
    open: int = 0
    investigating: int = 0
    closed: int = 0
    resolved: int = 0
    authority_notified: int = 0
    subjects_notified: int = 0
    notified_late: int = 0
    overdue_unnotified: int = 0
    avg_resolution_days: Optional[float] = None


class DeleteOut(BaseModel):
    success: bool = True
