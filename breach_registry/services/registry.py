# breach_registry/services/registry.py
"""
Incident registry: the operations the HTTP layer (or any other caller)
uses to record, amend, read and delete breach incidents.

Writes go through the deadline rules first and then through the version
chain, one transaction each. Reads are plain queries.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from sqlalchemy.orm import Session

from breach_registry.core.errors import NotFound, StorageUnavailable, VersionConflict
from breach_registry.crud import incident as crud_incident
from breach_registry.models.incident import Incident, IncidentVersion
from breach_registry.services.deadline import (
    DeadlineEvaluation,
    check_notification_rules,
    evaluate_snapshot,
)
from breach_registry.services.version_chain import VersionChainManager, atomic, normalize_snapshot

log = logging.getLogger("breach_registry.registry")

VERSION_CONFLICT_RETRIES = 3
_RETRY_BACKOFF_SECONDS = 0.02

T = TypeVar("T")


@dataclass
class WriteResult:
    incident: Incident
    version: IncidentVersion
    token: str


@dataclass
class IncidentHistory:
    incident: Incident
    versions: List[IncidentVersion]
    deadline: DeadlineEvaluation

    @property
    def latest(self) -> IncidentVersion:
        return self.versions[-1]


@dataclass
class IncidentListItem:
    incident: Incident
    latest_version: IncidentVersion
    version_count: int
    deadline: DeadlineEvaluation


# ---------------------------
# Helpers
# ---------------------------
def _fields_dict(fields: Any) -> Dict[str, Any]:
    if hasattr(fields, "model_dump"):
        return fields.model_dump()
    return dict(fields)


def _with_conflict_retry(op: Callable[[], T], *, what: str) -> T:
    for attempt in range(1, VERSION_CONFLICT_RETRIES + 1):
        try:
            return op()
        except VersionConflict:
            if attempt == VERSION_CONFLICT_RETRIES:
                log.warning("%s: version conflict persisted after %s attempts", what, attempt)
                raise
            log.info("%s: version conflict, retrying (attempt %s)", what, attempt)
            time.sleep(_RETRY_BACKOFF_SECONDS * attempt)
    raise VersionConflict()  # pragma: no cover


def _write_result(incident: Incident, version: IncidentVersion) -> WriteResult:
    if not version.token:
        raise StorageUnavailable("Version was stored without a verification token.")
    return WriteResult(incident=incident, version=version, token=version.token)


def _owned_head(db: Session, incident_id: str, organization_id: str) -> Incident:
    incident = crud_incident.get_incident(db, incident_id)
    # Foreign and missing incidents look the same to the caller.
    if not incident or incident.organization_id != organization_id:
        raise NotFound()
    return incident


# ---------------------------
# Writes
# ---------------------------
def create_incident(
    db: Session,
    organization_id: str,
    user_id: str,
    fields: Mapping[str, Any],
    *,
    chain: Optional[VersionChainManager] = None,
) -> WriteResult:
    """
    Record a new incident (head + version 1).

    Raises ValidationError when the notification rules fail, NotFound for an
    unknown organization, VersionConflict when numbering kept colliding.
    """
    chain = chain or VersionChainManager()
    snapshot = normalize_snapshot(_fields_dict(fields))
    check_notification_rules(snapshot)

    incident, version = _with_conflict_retry(
        lambda: chain.create_incident(
            db, organization_id=organization_id, snapshot=snapshot, actor_id=user_id
        ),
        what=f"create incident org={organization_id}",
    )
    log.info(
        "Incident created id=%s org=%s #%s by=%s",
        incident.id,
        organization_id,
        incident.internal_id,
        user_id,
    )
    return _write_result(incident, version)


def update_incident(
    db: Session,
    organization_id: str,
    user_id: str,
    incident_id: str,
    fields: Mapping[str, Any],
    *,
    chain: Optional[VersionChainManager] = None,
) -> WriteResult:
    """Append a new version carrying `fields`. Never edits an existing version."""
    _owned_head(db, incident_id, organization_id)

    chain = chain or VersionChainManager()
    snapshot = normalize_snapshot(_fields_dict(fields))
    check_notification_rules(snapshot)

    incident, version = _with_conflict_retry(
        lambda: chain.append_version(
            db,
            incident_id=incident_id,
            snapshot=snapshot,
            actor_id=user_id,
            organization_id=organization_id,
        ),
        what=f"update incident id={incident_id}",
    )
    log.info(
        "Incident updated id=%s org=%s v%s by=%s",
        incident.id,
        organization_id,
        version.version_number,
        user_id,
    )
    return _write_result(incident, version)


def delete_incident(db: Session, incident_id: str, organization_id: str) -> Dict[str, Any]:
    """
    Hard delete of an incident and its whole history. Irreversible.
    Returns a short summary of what was removed (for the audit trail).
    """
    incident = _owned_head(db, incident_id, organization_id)
    summary = {
        "incident_id": incident.id,
        "organization_id": incident.organization_id,
        "internal_id": incident.internal_id,
        "version_count": incident.current_version_number,
        "status": incident.status,
    }

    def write() -> int:
        return crud_incident.delete_incident_rows(db, incident_id)

    removed = atomic(db, write)
    if removed != 1:
        raise NotFound()
    log.warning(
        "Incident deleted id=%s org=%s #%s (%s versions)",
        incident_id,
        organization_id,
        summary["internal_id"],
        summary["version_count"],
    )
    return summary


# ---------------------------
# Reads
# ---------------------------
def get_incident_with_history(
    db: Session, incident_id: str, *, now: Optional[datetime] = None
) -> Optional[IncidentHistory]:
    """
    Head plus every version, oldest first, and the deadline status of the
    latest version. No tenant check here: callers that act for an
    organization must compare `incident.organization_id` themselves.
    """
    incident = crud_incident.get_incident(db, incident_id)
    if not incident:
        return None
    versions = crud_incident.list_versions(db, incident_id)
    if not versions:
        return None
    return IncidentHistory(
        incident=incident,
        versions=versions,
        deadline=evaluate_snapshot(versions[-1].snapshot(), now=now),
    )


def get_organization_incidents(
    db: Session, organization_id: str, *, now: Optional[datetime] = None
) -> List[IncidentListItem]:
    rows = crud_incident.list_with_latest(db, organization_id)
    return [
        IncidentListItem(
            incident=incident,
            latest_version=version,
            version_count=incident.current_version_number,
            deadline=evaluate_snapshot(version.snapshot(), now=now),
        )
        for incident, version in rows
    ]


def get_organization_incident_stats(
    db: Session, organization_id: str, *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Counters over the latest version of every incident of an organization."""
    stats: Dict[str, Any] = {
        "total": 0,
        "open": 0,
        "investigating": 0,
        "closed": 0,
        "resolved": 0,
        "authority_notified": 0,
        "subjects_notified": 0,
        "notified_late": 0,
        "overdue_unnotified": 0,
        "avg_resolution_days": None,
    }
    resolution_days: List[float] = []

    for item in get_organization_incidents(db, organization_id, now=now):
        v = item.latest_version
        stats["total"] += 1
        if v.status in ("open", "investigating", "closed"):
            stats[v.status] += 1
        if v.resolved_at:
            stats["resolved"] += 1
            resolution_days.append((v.resolved_at - v.detected_at).total_seconds() / 86400.0)
        if v.authority_notified:
            stats["authority_notified"] += 1
            if item.deadline.is_late:
                stats["notified_late"] += 1
        if v.subjects_notified:
            stats["subjects_notified"] += 1
        if item.deadline.late_unnotified:
            stats["overdue_unnotified"] += 1

    if resolution_days:
        stats["avg_resolution_days"] = round(sum(resolution_days) / len(resolution_days), 1)
    return stats


def find_overdue_unnotified(db: Session, *, now: Optional[datetime] = None) -> List[IncidentListItem]:
    """Incidents across all organizations past the 72h window with no authority notification."""
    out: List[IncidentListItem] = []
    for incident, version in crud_incident.list_all_with_latest(db):
        if version.status == "closed":
            continue
        evaluation = evaluate_snapshot(version.snapshot(), now=now)
        if evaluation.late_unnotified:
            out.append(
                IncidentListItem(
                    incident=incident,
                    latest_version=version,
                    version_count=incident.current_version_number,
                    deadline=evaluation,
                )
            )
    return out
