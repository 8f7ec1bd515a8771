# breach_registry/services/verification.py
"""
Public, unauthenticated proof that a given incident version exists.

Only identity, version and time metadata leave this module. The query
selects exactly those columns, so no snapshot content is ever loaded.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from breach_registry.models.incident import Incident, IncidentVersion
from breach_registry.models.organization import Organization
from breach_registry.services.tokens import is_well_formed

log = logging.getLogger("breach_registry.verification")


@dataclass(frozen=True)
class VerificationResult:
    organization_name: str
    internal_id: int
    version_number: int
    created_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def verify(db: Session, token: str) -> Optional[VerificationResult]:
    """None for malformed and unknown tokens alike."""
    token = (token or "").strip().lower()
    if not is_well_formed(token):
        return None

    row = (
        db.query(
            Organization.name,
            Incident.internal_id,
            IncidentVersion.version_number,
            IncidentVersion.created_at,
        )
        .select_from(IncidentVersion)
        .join(Incident, Incident.id == IncidentVersion.incident_id)
        .join(Organization, Organization.id == Incident.organization_id)
        .filter(IncidentVersion.token == token)
        .first()
    )
    if row is None:
        log.info("Verification miss for token prefix=%s", token[:8])
        return None

    name, internal_id, version_number, created_at = row
    return VerificationResult(
        organization_name=name,
        internal_id=internal_id,
        version_number=version_number,
        created_at=created_at,
    )
