import threading

from breach_registry.services import registry


def test_two_simultaneous_updates_both_land(session_factory, db, seed_organizations, fields):
    created = registry.create_incident(db, "org-acme", "user-1", fields())
    incident_id = created.incident.id
    for i in range(2):
        registry.update_incident(db, "org-acme", "user-1", incident_id, fields(consequences=f"base {i}"))
    n = 3

    barrier = threading.Barrier(2)
    results, errors = {}, []

    def edit(label):
        session = session_factory()
        try:
            barrier.wait()
            res = registry.update_incident(
                session, "org-acme", f"editor-{label}", incident_id, fields(measures_taken=label)
            )
            results[label] = res.version.version_number
        except Exception as exc:  # collected and asserted below
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=edit, args=(label,)) for label in ("alpha", "beta")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(results.values()) == [n + 1, n + 2]

    db.expire_all()
    history = registry.get_incident_with_history(db, incident_id)
    assert [v.version_number for v in history.versions] == list(range(1, n + 3))
    assert {v.measures_taken for v in history.versions[-2:]} == {"alpha", "beta"}
    assert history.incident.current_version_number == n + 2


def test_concurrent_creates_get_distinct_internal_ids(session_factory, seed_organizations, fields):
    barrier = threading.Barrier(3)
    internal_ids, errors = [], []

    def create():
        session = session_factory()
        try:
            barrier.wait()
            res = registry.create_incident(session, "org-acme", "user-1", fields())
            internal_ids.append(res.incident.internal_id)
        except Exception as exc:  # collected and asserted below
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=create) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(internal_ids) == [1, 2, 3]
