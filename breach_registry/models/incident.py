# breach_registry/models/incident.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
)

from breach_registry.core.errors import ImmutableVersionError
from breach_registry.db.base import Base

# Reportable fields copied into every version (Art. 33 report content).
SNAPSHOT_FIELDS = (
    "detected_at",
    "detection_timezone",
    "description",
    "incident_type",
    "data_categories",
    "affected_subjects_count",
    "affected_records_count",
    "consequences",
    "probable_risks",
    "measures_taken",
    "measures_planned",
    "authority_notified",
    "authority_notified_at",
    "delay_justification",
    "subjects_notified",
    "subjects_notified_at",
    "resolved_at",
    "status",
    "contact_name",
    "contact_email",
    "contact_phone",
    "internal_notes",
)


class Incident(Base):
    """
    Head row of a personal-data-breach incident.

    Content lives in IncidentVersion; the head only tracks identity,
    ownership, the organization-facing number and the version counter.
    """

    __tablename__ = "incidents"

    id = Column(String(36), primary_key=True)

    # Scoping (immutable after creation)
    organization_id = Column(
        String(64),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    internal_id = Column(Integer, nullable=False)

    # Always equal to max(version_number) of this incident
    current_version_number = Column(Integer, nullable=False, default=1)

    # open | investigating | closed (mirrors the latest version)
    status = Column(String(20), nullable=False, default="open", index=True)

    # Audit
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_by = Column(String(64), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "internal_id", name="uq_incidents_org_internal_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Incident id={self.id} org={self.organization_id} #{self.internal_id} "
            f"v{self.current_version_number} status={self.status!r}>"
        )


class IncidentVersion(Base):
    """
    One immutable snapshot of an incident. Rows are inserted once and
    never updated; see the mapper guards at the bottom of this module.
    """

    __tablename__ = "incident_versions"

    id = Column(String(36), primary_key=True)
    incident_id = Column(
        String(36),
        ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number = Column(Integer, nullable=False)

    # 1. Identification
    detected_at = Column(DateTime, nullable=False)  # UTC
    detection_timezone = Column(String(64), nullable=True)  # IANA name the reporter used
    description = Column(Text, nullable=False)
    incident_type = Column(String(50), nullable=True)
    data_categories = Column(JSON, nullable=False, default=list)
    affected_subjects_count = Column(Integer, nullable=True)
    affected_records_count = Column(Integer, nullable=True)

    # 2. Consequences and risk
    consequences = Column(Text, nullable=True)
    probable_risks = Column(Text, nullable=True)

    # 3. Measures
    measures_taken = Column(Text, nullable=True)
    measures_planned = Column(Text, nullable=True)

    # 4. Communication to the supervisory authority and data subjects
    authority_notified = Column(Boolean, nullable=False, default=False)
    authority_notified_at = Column(DateTime, nullable=True)  # UTC
    delay_justification = Column(Text, nullable=True)
    subjects_notified = Column(Boolean, nullable=False, default=False)
    subjects_notified_at = Column(DateTime, nullable=True)  # UTC

    # 5. Follow-up
    resolved_at = Column(DateTime, nullable=True)  # UTC
    status = Column(String(20), nullable=False, default="open")

    # Point of contact (DPO or other), Art. 33(3)(b)
    contact_name = Column(String(100), nullable=True)
    contact_email = Column(String(100), nullable=True)
    contact_phone = Column(String(20), nullable=True)

    # 6. Private, never exposed publicly
    internal_notes = Column(Text, nullable=True)

    # Deadline fact at the time of writing
    is_late = Column(Boolean, nullable=False, default=False)

    # Verification
    token = Column(String(64), nullable=False)
    token_nonce = Column(Integer, nullable=False, default=0)

    # Audit
    created_at = Column(DateTime, nullable=False)
    created_by = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("incident_id", "version_number", name="uq_incident_versions_number"),
        UniqueConstraint("token", name="uq_incident_versions_token"),
    )

    def snapshot(self) -> Dict[str, Any]:
        """Reportable fields of this version, as written."""
        data = {name: getattr(self, name) for name in SNAPSHOT_FIELDS}
        data["data_categories"] = list(data["data_categories"] or [])
        return data

    def __repr__(self) -> str:
        return f"<IncidentVersion incident={self.incident_id} v{self.version_number}>"


Index("ix_incidents_org_updated", Incident.organization_id, Incident.updated_at)
Index("ix_incident_versions_created", IncidentVersion.incident_id, IncidentVersion.created_at)


# ---------------------------
# Append-only guards
# ---------------------------
@event.listens_for(IncidentVersion, "before_update")
def _reject_version_update(mapper, connection, target):
    raise ImmutableVersionError(
        f"Version {target.version_number} of incident {target.incident_id} is immutable"
    )


@event.listens_for(IncidentVersion, "before_delete")
def _reject_version_delete(mapper, connection, target):
    raise ImmutableVersionError(
        "Incident versions can only be removed together with their incident"
    )
