# breach_registry/crud/incident.py
"""Read-side queries over incident heads and their versions."""
from typing import List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.orm import Session

from breach_registry.models.incident import Incident, IncidentVersion


def get_incident(db: Session, incident_id: str) -> Optional[Incident]:
    return db.query(Incident).filter(Incident.id == incident_id).first()


def list_versions(db: Session, incident_id: str) -> List[IncidentVersion]:
    """All versions of one incident, oldest first."""
    return (
        db.query(IncidentVersion)
        .filter(IncidentVersion.incident_id == incident_id)
        .order_by(IncidentVersion.version_number.asc())
        .all()
    )


def list_with_latest(db: Session, organization_id: str) -> List[Tuple[Incident, IncidentVersion]]:
    """Heads of one organization joined to their latest version, most recently updated first."""
    return (
        db.query(Incident, IncidentVersion)
        .join(
            IncidentVersion,
            and_(
                IncidentVersion.incident_id == Incident.id,
                IncidentVersion.version_number == Incident.current_version_number,
            ),
        )
        .filter(Incident.organization_id == organization_id)
        .order_by(Incident.updated_at.desc(), Incident.internal_id.desc())
        .all()
    )


def list_all_with_latest(db: Session) -> List[Tuple[Incident, IncidentVersion]]:
    return (
        db.query(Incident, IncidentVersion)
        .join(
            IncidentVersion,
            and_(
                IncidentVersion.incident_id == Incident.id,
                IncidentVersion.version_number == Incident.current_version_number,
            ),
        )
        .order_by(Incident.organization_id.asc(), Incident.internal_id.asc())
        .all()
    )


def delete_incident_rows(db: Session, incident_id: str) -> int:
    """
    Remove every version and then the head. Bulk deletes skip the per-row
    append-only guards on IncidentVersion. Caller commits.
    """
    db.query(IncidentVersion).filter(IncidentVersion.incident_id == incident_id).delete(
        synchronize_session=False
    )
    return db.query(Incident).filter(Incident.id == incident_id).delete(synchronize_session=False)
