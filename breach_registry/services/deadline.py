# breach_registry/services/deadline.py
"""
GDPR Art. 33 notification clock.

Pure functions, no I/O. The supervisory authority must be notified within
72 hours of becoming aware of a breach. The window is measured in elapsed
time: wall-clock inputs are converted to UTC through their IANA time zone
first, so a DST switch inside the window neither adds nor removes an hour.

All datetimes returned from here are naive UTC, matching how the models
store them.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from breach_registry.core.errors import ValidationError

NOTIFICATION_WINDOW = timedelta(hours=72)
DEFAULT_TIMEZONE = "UTC"


@dataclass(frozen=True)
class DeadlineEvaluation:
    detected_at: datetime
    deadline: datetime
    notified_at: Optional[datetime]
    is_late: bool
    hours_remaining: Optional[float]
    hours_overdue: Optional[float]

    @property
    def notified(self) -> bool:
        return self.notified_at is not None

    @property
    def late_unnotified(self) -> bool:
        return self.is_late and self.notified_at is None


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(
            "Unknown time zone.",
            details={"detection_timezone": f"'{name}' is not a valid IANA time zone"},
        ) from None


def to_utc(value: datetime, tz: Optional[str] = None) -> datetime:
    """
    Naive UTC for `value`.
    Aware datetimes are converted; naive ones are read as wall-clock time in `tz`.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_timezone(tz))
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def notification_deadline(detected_at: datetime, tz: Optional[str] = None) -> datetime:
    return to_utc(detected_at, tz) + NOTIFICATION_WINDOW


def _hours(delta: timedelta) -> float:
    return round(delta.total_seconds() / 3600.0, 2)


def evaluate(
    detected_at: datetime,
    authority_notified_at: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    tz: Optional[str] = None,
) -> DeadlineEvaluation:
    """
    Deadline status of one report.

    The clock stops at `authority_notified_at` when given, otherwise it runs
    until `now`. Being late and still unnotified is reported, never blocked.
    """
    detected = to_utc(detected_at, tz)
    deadline = detected + NOTIFICATION_WINDOW
    notified = to_utc(authority_notified_at, tz) if authority_notified_at else None
    reference = notified if notified is not None else to_utc(now or utcnow(), DEFAULT_TIMEZONE)

    is_late = reference > deadline
    return DeadlineEvaluation(
        detected_at=detected,
        deadline=deadline,
        notified_at=notified,
        is_late=is_late,
        hours_remaining=None if is_late else _hours(deadline - reference),
        hours_overdue=_hours(reference - deadline) if is_late else None,
    )


def evaluate_snapshot(snapshot: Mapping[str, Any], *, now: Optional[datetime] = None) -> DeadlineEvaluation:
    """Evaluate a normalized (UTC) incident snapshot. A recorded notification time stops the clock."""
    return evaluate(snapshot["detected_at"], snapshot.get("authority_notified_at"), now=now)


def check_notification_rules(snapshot: Mapping[str, Any], *, now: Optional[datetime] = None) -> DeadlineEvaluation:
    """
    Cross-field rules of an Art. 33 report. `snapshot` must already be
    normalized to UTC. Raises ValidationError listing every violated field.
    """
    problems: Dict[str, str] = {}
    detected = snapshot.get("detected_at")
    if detected is None:
        raise ValidationError(details={"detected_at": "Detection time is required"})

    if not str(snapshot.get("description") or "").strip():
        problems["description"] = "A description of the breach is required"

    if snapshot.get("authority_notified") and not snapshot.get("authority_notified_at"):
        problems["authority_notified_at"] = (
            "Notification time is required when the authority was notified"
        )
    if snapshot.get("subjects_notified") and not snapshot.get("subjects_notified_at"):
        problems["subjects_notified_at"] = (
            "Notification time is required when the affected subjects were notified"
        )

    for field in ("authority_notified_at", "subjects_notified_at", "resolved_at"):
        value = snapshot.get(field)
        if value is not None and value < detected:
            problems[field] = "Must not be earlier than the detection time"

    evaluation = evaluate_snapshot(snapshot, now=now)
    if evaluation.notified and evaluation.is_late:
        justification = (snapshot.get("delay_justification") or "").strip()
        if not justification:
            problems["delay_justification"] = (
                "A justification is required when the authority is notified "
                "more than 72 hours after detection"
            )

    if problems:
        raise ValidationError(details=problems)
    return evaluation
