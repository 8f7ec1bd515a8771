# breach_registry/worker/scheduler.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError

from breach_registry.core import config
from breach_registry.db.session import SessionLocal
from breach_registry.services.audit import audit_log
from breach_registry.services.registry import find_overdue_unnotified

log = logging.getLogger("breach_registry.scheduler")


def run_daily_deadline_scan(session_factory=SessionLocal, now: Optional[datetime] = None) -> int:
    """
    Flag every open incident whose 72h window has passed without an
    authority notification: one warning log line and one
    INCIDENT_DEADLINE_OVERDUE audit entry each. Read-only towards the
    version chain. Returns the number of incidents flagged.
    """
    db = session_factory()
    try:
        overdue = find_overdue_unnotified(db, now=now)
        for item in overdue:
            log.warning(
                "Art. 33 deadline passed without authority notification: incident=%s org=%s #%s overdue_h=%s",
                item.incident.id,
                item.incident.organization_id,
                item.incident.internal_id,
                item.deadline.hours_overdue,
            )
            audit_log(
                db,
                organization_id=item.incident.organization_id,
                user_id=None,
                action="INCIDENT_DEADLINE_OVERDUE",
                entity_type="incident",
                entity_id=item.incident.id,
                meta={
                    "internal_id": item.incident.internal_id,
                    "version_number": item.latest_version.version_number,
                    "deadline": item.deadline.deadline.isoformat(),
                    "hours_overdue": item.deadline.hours_overdue,
                },
                ip=None,
            )
        return len(overdue)
    except SQLAlchemyError:
        db.rollback()
        log.exception("Daily deadline scan failed")
        return 0
    finally:
        db.close()


def make_scheduler() -> BackgroundScheduler:
    """
    Create and return a BackgroundScheduler instance configured from env:
      - APP_TIMEZONE           (default: UTC)
      - APP_SCHEDULER_HOUR     (default: 6)
      - APP_SCHEDULER_MINUTE   (default: 0)
    """
    sched = BackgroundScheduler(timezone=config.APP_TIMEZONE)

    sched.add_job(
        run_daily_deadline_scan,
        CronTrigger(hour=config.APP_SCHEDULER_HOUR, minute=config.APP_SCHEDULER_MINUTE),
        id="daily_deadline_scan",
        replace_existing=True,
    )
    return sched
