from datetime import datetime, timedelta, timezone

import pytest

from breach_registry.core.errors import ValidationError
from breach_registry.services.deadline import (
    NOTIFICATION_WINDOW,
    check_notification_rules,
    evaluate,
    notification_deadline,
    resolve_timezone,
    to_utc,
)

T0 = datetime(2026, 1, 1, 0, 0, 0)


def test_deadline_is_72_hours_after_detection():
    ev = evaluate(T0, now=T0 + timedelta(hours=24))
    assert ev.deadline == T0 + NOTIFICATION_WINDOW
    assert ev.is_late is False
    assert ev.hours_remaining == 48.0
    assert ev.hours_overdue is None
    assert ev.notified is False


def test_unnotified_past_deadline_is_late_and_unnotified():
    ev = evaluate(T0, now=T0 + timedelta(hours=96))
    assert ev.is_late is True
    assert ev.late_unnotified is True
    assert ev.hours_overdue == 24.0
    assert ev.hours_remaining is None


def test_notification_time_stops_the_clock():
    ev = evaluate(T0, T0 + timedelta(hours=10), now=T0 + timedelta(days=30))
    assert ev.is_late is False
    assert ev.notified is True
    assert ev.hours_remaining == 62.0


def test_late_notification_is_late_but_not_unnotified():
    ev = evaluate(T0, T0 + timedelta(hours=73))
    assert ev.is_late is True
    assert ev.late_unnotified is False
    assert ev.hours_overdue == 1.0


def test_exactly_72_hours_is_on_time():
    ev = evaluate(T0, T0 + timedelta(hours=72))
    assert ev.is_late is False


def test_dst_switch_does_not_change_elapsed_window():
    # Europe/Madrid moves to summer time on 2026-03-29; the window stays 72 real hours.
    deadline = notification_deadline(datetime(2026, 3, 28, 12, 0), "Europe/Madrid")
    assert deadline == datetime(2026, 3, 31, 11, 0)


def test_to_utc_handles_aware_and_naive_values():
    aware = datetime(2026, 7, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc(aware) == datetime(2026, 7, 1, 10, 0)
    assert to_utc(datetime(2026, 7, 1, 12, 0), "Europe/Madrid") == datetime(2026, 7, 1, 10, 0)
    assert to_utc(datetime(2026, 7, 1, 12, 0)) == datetime(2026, 7, 1, 12, 0)


def test_unknown_timezone_is_a_validation_error():
    with pytest.raises(ValidationError):
        resolve_timezone("Mars/Olympus_Mons")


def _snapshot(**overrides):
    snap = {
        "detected_at": T0,
        "description": "Backup tape missing from courier van",
        "authority_notified": False,
        "authority_notified_at": None,
        "subjects_notified": False,
        "subjects_notified_at": None,
        "resolved_at": None,
        "delay_justification": None,
    }
    snap.update(overrides)
    return snap


def test_late_notification_requires_justification():
    snap = _snapshot(authority_notified=True, authority_notified_at=T0 + timedelta(hours=73))
    with pytest.raises(ValidationError) as exc:
        check_notification_rules(snap)
    assert "delay_justification" in exc.value.details


def test_blank_justification_does_not_count():
    snap = _snapshot(
        authority_notified=True,
        authority_notified_at=T0 + timedelta(hours=73),
        delay_justification="   ",
    )
    with pytest.raises(ValidationError):
        check_notification_rules(snap)


def test_late_notification_with_justification_passes():
    snap = _snapshot(
        authority_notified=True,
        authority_notified_at=T0 + timedelta(hours=73),
        delay_justification="Forensic scope unknown until day 4",
    )
    ev = check_notification_rules(snap)
    assert ev.is_late is True


def test_notified_flags_require_times():
    snap = _snapshot(authority_notified=True, subjects_notified=True)
    with pytest.raises(ValidationError) as exc:
        check_notification_rules(snap)
    assert set(exc.value.details) == {"authority_notified_at", "subjects_notified_at"}


def test_times_before_detection_are_rejected():
    snap = _snapshot(resolved_at=T0 - timedelta(minutes=1))
    with pytest.raises(ValidationError) as exc:
        check_notification_rules(snap)
    assert "resolved_at" in exc.value.details


def test_late_unnotified_never_blocks_a_write():
    ev = check_notification_rules(_snapshot(), now=T0 + timedelta(days=10))
    assert ev.late_unnotified is True


@pytest.mark.parametrize("description", [None, "", "   "])
def test_description_is_required(description):
    with pytest.raises(ValidationError) as exc:
        check_notification_rules(_snapshot(description=description))
    assert set(exc.value.details) == {"description"}
