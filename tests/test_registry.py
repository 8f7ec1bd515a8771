from datetime import datetime, timedelta

import pytest

from breach_registry.core.errors import NotFound, ValidationError, VersionConflict
from breach_registry.models.incident import Incident, IncidentVersion
from breach_registry.services import registry
from breach_registry.services.version_chain import VersionChainManager, normalize_snapshot

DETECTED = datetime(2026, 1, 10, 9, 0, 0)


def test_create_returns_incident_version_and_token(db, seed_organizations, fields):
    result = registry.create_incident(db, "org-acme", "user-1", fields())
    assert result.token == result.version.token
    assert len(result.token) == 64
    assert result.incident.internal_id == 1
    assert result.version.version_number == 1


def test_history_is_gapless_and_ascending(db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "user-1", fields())
    n = 4
    for i in range(n):
        registry.update_incident(
            db, "org-acme", "user-2", created.incident.id, fields(measures_planned=f"step {i}")
        )

    history = registry.get_incident_with_history(db, created.incident.id)
    assert [v.version_number for v in history.versions] == list(range(1, n + 2))
    assert history.incident.current_version_number == n + 1
    assert history.latest.measures_planned == f"step {n - 1}"


def test_stored_version_keeps_exactly_what_was_submitted(db, seed_organizations, fields):
    submitted = fields()
    created = registry.create_incident(db, "org-acme", "user-1", submitted)
    registry.update_incident(
        db, "org-acme", "user-1", created.incident.id, fields(description="Scope widened")
    )

    db.expire_all()
    v1 = (
        db.query(IncidentVersion)
        .filter_by(incident_id=created.incident.id, version_number=1)
        .one()
    )
    assert v1.snapshot() == normalize_snapshot(submitted)
    assert v1.token == created.token


def test_every_write_gets_a_distinct_token(db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "user-1", fields())
    updated = registry.update_incident(db, "org-acme", "user-1", created.incident.id, fields())
    assert created.token != updated.token


def test_update_from_other_organization_looks_like_missing(db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "user-1", fields())

    with pytest.raises(NotFound) as foreign:
        registry.update_incident(db, "org-globex", "intruder", created.incident.id, fields())
    with pytest.raises(NotFound) as missing:
        registry.update_incident(db, "org-globex", "intruder", "no-such-incident", fields())

    assert foreign.value.message == missing.value.message
    assert foreign.value.status_code == missing.value.status_code == 404
    db.expire_all()
    assert db.get(Incident, created.incident.id).current_version_number == 1


def test_late_notification_without_justification_is_rejected(db, seed_organizations, fields):
    late = fields(authority_notified=True, authority_notified_at=DETECTED + timedelta(hours=73))
    with pytest.raises(ValidationError) as exc:
        registry.create_incident(db, "org-acme", "user-1", late)
    assert "delay_justification" in exc.value.details
    assert db.query(Incident).count() == 0


def test_late_notification_with_justification_is_stored_as_late(db, seed_organizations, fields):
    late = fields(
        authority_notified=True,
        authority_notified_at=DETECTED + timedelta(hours=73),
        delay_justification="Breach scope confirmed by external forensics on day 3",
    )
    result = registry.create_incident(db, "org-acme", "user-1", late)
    assert result.version.is_late is True


def test_timely_notification_is_not_late(db, seed_organizations, fields):
    ok = fields(authority_notified=True, authority_notified_at=DETECTED + timedelta(hours=20))
    result = registry.create_incident(db, "org-acme", "user-1", ok)
    assert result.version.is_late is False


def test_overdue_unnotified_incident_can_still_be_recorded(db, seed_organizations, fields):
    result = registry.create_incident(
        db, "org-acme", "user-1", fields(detected_at=datetime(2020, 1, 1))
    )
    assert result.version.is_late is True
    history = registry.get_incident_with_history(db, result.incident.id)
    assert history.deadline.late_unnotified is True


def test_internal_ids_are_sequential_per_organization_and_never_reused(db, seed_organizations, fields):
    ids = [registry.create_incident(db, "org-acme", "u", fields()).incident for _ in range(3)]
    assert [i.internal_id for i in ids] == [1, 2, 3]

    other = registry.create_incident(db, "org-globex", "u", fields())
    assert other.incident.internal_id == 1

    registry.delete_incident(db, ids[2].id, "org-acme")
    after_delete = registry.create_incident(db, "org-acme", "u", fields())
    assert after_delete.incident.internal_id == 4


def test_delete_removes_head_and_all_versions(db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "u", fields())
    registry.update_incident(db, "org-acme", "u", created.incident.id, fields(status="closed"))
    incident_id = created.incident.id

    summary = registry.delete_incident(db, incident_id, "org-acme")

    assert summary["version_count"] == 2
    assert registry.get_incident_with_history(db, incident_id) is None
    assert db.query(IncidentVersion).filter_by(incident_id=incident_id).count() == 0


def test_delete_from_other_organization_is_not_found(db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "u", fields())
    with pytest.raises(NotFound):
        registry.delete_incident(db, created.incident.id, "org-globex")
    assert registry.get_incident_with_history(db, created.incident.id) is not None


def test_get_with_history_of_unknown_id_returns_none(db):
    assert registry.get_incident_with_history(db, "nope") is None


def test_organization_list_has_latest_version_and_count(db, seed_organizations, fields):
    first = registry.create_incident(db, "org-acme", "u", fields())
    second = registry.create_incident(db, "org-acme", "u", fields())
    registry.update_incident(db, "org-acme", "u", first.incident.id, fields(status="investigating"))
    registry.create_incident(db, "org-globex", "u", fields())

    items = registry.get_organization_incidents(db, "org-acme")

    assert {i.incident.id for i in items} == {first.incident.id, second.incident.id}
    by_id = {i.incident.id: i for i in items}
    assert by_id[first.incident.id].version_count == 2
    assert by_id[first.incident.id].latest_version.version_number == 2
    assert by_id[first.incident.id].latest_version.status == "investigating"
    assert by_id[second.incident.id].version_count == 1


def test_organization_stats(db, seed_organizations, fields):
    now = DETECTED + timedelta(days=10)
    registry.create_incident(db, "org-acme", "u", fields())  # overdue, unnotified
    registry.create_incident(
        db,
        "org-acme",
        "u",
        fields(
            authority_notified=True,
            authority_notified_at=DETECTED + timedelta(hours=80),
            delay_justification="Late discovery of affected systems",
            subjects_notified=True,
            subjects_notified_at=DETECTED + timedelta(hours=90),
            resolved_at=DETECTED + timedelta(days=2),
            status="closed",
        ),
    )

    stats = registry.get_organization_incident_stats(db, "org-acme", now=now)

    assert stats["total"] == 2
    assert stats["open"] == 1
    assert stats["closed"] == 1
    assert stats["resolved"] == 1
    assert stats["authority_notified"] == 1
    assert stats["subjects_notified"] == 1
    assert stats["notified_late"] == 1
    assert stats["overdue_unnotified"] == 1
    assert stats["avg_resolution_days"] == 2.0


def test_find_overdue_unnotified_skips_notified_and_closed(db, seed_organizations, fields):
    now = DETECTED + timedelta(days=5)
    overdue = registry.create_incident(db, "org-acme", "u", fields())
    registry.create_incident(
        db,
        "org-acme",
        "u",
        fields(authority_notified=True, authority_notified_at=DETECTED + timedelta(hours=5)),
    )
    registry.create_incident(db, "org-globex", "u", fields(status="closed"))
    registry.create_incident(db, "org-globex", "u", fields(detected_at=now - timedelta(hours=1)))

    found = registry.find_overdue_unnotified(db, now=now)

    assert [i.incident.id for i in found] == [overdue.incident.id]


def test_missing_description_is_rejected_before_any_write(db, seed_organizations, fields):
    with pytest.raises(ValidationError) as exc:
        registry.create_incident(db, "org-acme", "user-1", fields(description=None))
    assert "description" in exc.value.details
    assert db.query(Incident).count() == 0


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(registry, "_RETRY_BACKOFF_SECONDS", 0)


def test_persistent_conflict_is_retried_then_surfaced(db, seed_organizations, fields, monkeypatch, no_backoff):
    created = registry.create_incident(db, "org-acme", "user-1", fields())
    calls = []

    def always_conflicts(self, db, **kwargs):
        calls.append(kwargs["incident_id"])
        raise VersionConflict()

    monkeypatch.setattr(VersionChainManager, "append_version", always_conflicts)

    with pytest.raises(VersionConflict):
        registry.update_incident(db, "org-acme", "user-1", created.incident.id, fields())

    assert len(calls) == registry.VERSION_CONFLICT_RETRIES == 3
    db.expire_all()
    assert db.get(Incident, created.incident.id).current_version_number == 1


def test_conflict_followed_by_success_appends_once(db, seed_organizations, fields, monkeypatch, no_backoff):
    created = registry.create_incident(db, "org-acme", "user-1", fields())
    original = VersionChainManager.append_version
    calls = []

    def conflicts_once(self, db, **kwargs):
        calls.append(kwargs["incident_id"])
        if len(calls) == 1:
            raise VersionConflict()
        return original(self, db, **kwargs)

    monkeypatch.setattr(VersionChainManager, "append_version", conflicts_once)

    result = registry.update_incident(
        db, "org-acme", "user-1", created.incident.id, fields(status="investigating")
    )

    assert len(calls) == 2
    assert result.version.version_number == 2
    assert result.incident.current_version_number == 2
    assert db.query(IncidentVersion).filter_by(incident_id=created.incident.id).count() == 2
