# breach_registry/crud/organization.py
from typing import Optional

from sqlalchemy.orm import Session

from breach_registry.models.organization import Organization


def _normalize_slug(val: Optional[str]) -> Optional[str]:
    if not val:
        return None
    return "-".join(val.strip().lower().split()) or None


def get_organization(db: Session, organization_id: str) -> Optional[Organization]:
    return db.get(Organization, organization_id)


def create_organization(
    db: Session, *, organization_id: str, name: str, slug: Optional[str] = None
) -> Organization:
    obj = Organization(
        id=organization_id,
        name=name.strip(),
        slug=_normalize_slug(slug),
        last_incident_internal_id=0,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
