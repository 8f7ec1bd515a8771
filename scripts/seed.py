#!/usr/bin/env python3
"""
Minimal seed:
- Ensures a demo organization exists so incidents can be recorded locally.
- Safe to run multiple times (idempotent).
"""
import os
import sys

# enable 'breach_registry.' imports
sys.path.append(os.getcwd())

from sqlalchemy.orm import Session

from breach_registry.crud.organization import create_organization, get_organization
from breach_registry.db.session import SessionLocal, engine
from breach_registry.models import Base
from breach_registry.models.organization import Organization


def ensure_organization(db: Session, organization_id: str, name: str) -> Organization:
    org = get_organization(db, organization_id)
    if org:
        if org.name != name:
            org.name = name
            db.commit()
            db.refresh(org)
        return org
    return create_organization(db, organization_id=organization_id, name=name, slug=name)


def main():
    organization_id = os.environ.get("SEED_ORGANIZATION_ID", "demo-org")
    name = os.environ.get("SEED_ORGANIZATION_NAME", "Demo Organization")

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        org = ensure_organization(db, organization_id, name)
        print(f"OK: organization ensured -> {org.name} (id={org.id})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
