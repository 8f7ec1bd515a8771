import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_registry.db")
os.environ["ENABLE_CREATE_ALL"] = "0"
os.environ["ENABLE_SCHEDULER"] = "0"
os.environ["VERIFICATION_TOKEN_SECRET"] = "test-verification-secret"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from breach_registry.core.auth import get_db
from breach_registry.db.session import enable_sqlite_foreign_keys
from breach_registry.main import app
from breach_registry.models import Base
from breach_registry.models.organization import Organization

TEST_DB_URL = "sqlite:///./test_registry.db"

engine = create_engine(TEST_DB_URL, connect_args={"check_same_thread": False})
event.listen(engine, "connect", enable_sqlite_foreign_keys)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def session_factory():
    return TestingSession


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def seed_organizations(db):
    orgs = {
        "acme": Organization(id="org-acme", name="Acme Clinics S.L."),
        "globex": Organization(id="org-globex", name="Globex Retail"),
    }
    for o in orgs.values():
        db.add(o)
    db.commit()
    for o in orgs.values():
        db.refresh(o)
    return orgs


@pytest.fixture
def fields():
    """Factory for a valid incident field set; keyword overrides replace defaults."""

    def make(**overrides):
        data = {
            "detected_at": datetime(2026, 1, 10, 9, 0, 0),
            "detection_timezone": "UTC",
            "description": "Laptop with unencrypted patient exports stolen from a car",
            "incident_type": "device_loss",
            "data_categories": ["identifying", "health"],
            "affected_subjects_count": 120,
            "affected_records_count": 480,
            "consequences": "Possible disclosure of health data",
            "probable_risks": "Identity theft, discrimination",
            "measures_taken": "Remote wipe requested",
            "measures_planned": "Enforce disk encryption",
            "authority_notified": False,
            "authority_notified_at": None,
            "delay_justification": None,
            "subjects_notified": False,
            "subjects_notified_at": None,
            "resolved_at": None,
            "status": "open",
            "contact_name": "Dana Ruiz",
            "contact_email": "dpo@acme.example",
            "contact_phone": "+34 600 000 000",
            "internal_notes": "Police report pending",
        }
        data.update(overrides)
        return data

    return make


def headers(user_id: str = "user-1") -> dict:
    return {"X-User-ID": user_id}


def as_json(data: dict) -> dict:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in data.items()}
