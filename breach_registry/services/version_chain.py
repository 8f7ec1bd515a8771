# breach_registry/services/version_chain.py
"""
Append-only version chain of an incident.

Every write produces exactly one new IncidentVersion row whose number is
the head's `current_version_number` + 1. Numbers are claimed with a
compare-and-swap UPDATE on the head (and on the organization row for the
incident number), so two writers that read the same counter cannot both
succeed: the loser gets VersionConflict and nothing of its write persists.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from breach_registry.core.errors import (
    NotFound,
    RegistryError,
    StorageUnavailable,
    TokenCollision,
    VersionConflict,
)
from breach_registry.models.incident import SNAPSHOT_FIELDS, Incident, IncidentVersion
from breach_registry.models.organization import Organization
from breach_registry.services.deadline import DEFAULT_TIMEZONE, evaluate_snapshot, to_utc, utcnow
from breach_registry.services.tokens import generate_token

log = logging.getLogger("breach_registry.version_chain")

TOKEN_MAX_ATTEMPTS = 5

_DATETIME_FIELDS = ("detected_at", "authority_notified_at", "subjects_notified_at", "resolved_at")
_DEFAULTS: Dict[str, Any] = {
    "data_categories": [],
    "authority_notified": False,
    "subjects_notified": False,
    "status": "open",
}

# Unique constraints two racing writers can both hit. Postgres and MySQL
# report the constraint name, SQLite only the columns.
_RACE_MARKERS = (
    "uq_incident_versions_number",
    "uq_incidents_org_internal_id",
    "uq_incident_versions_token",
    "UNIQUE constraint failed: incident_versions.incident_id, incident_versions.version_number",
    "UNIQUE constraint failed: incidents.organization_id, incidents.internal_id",
    "UNIQUE constraint failed: incident_versions.token",
)


def normalize_snapshot(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Reduce write input to exactly the stored snapshot fields.

    Naive datetimes are read in `detection_timezone` and converted to naive
    UTC; the zone name itself is kept so the reporter's view can be rebuilt.
    """
    snapshot: Dict[str, Any] = {}
    for name in SNAPSHOT_FIELDS:
        value = data.get(name)
        snapshot[name] = _DEFAULTS.get(name) if value is None else value

    tz = snapshot["detection_timezone"] or DEFAULT_TIMEZONE
    snapshot["detection_timezone"] = tz
    for name in _DATETIME_FIELDS:
        if snapshot[name] is not None:
            snapshot[name] = to_utc(snapshot[name], tz)

    snapshot["data_categories"] = list(snapshot["data_categories"] or [])
    snapshot["authority_notified"] = bool(snapshot["authority_notified"])
    snapshot["subjects_notified"] = bool(snapshot["subjects_notified"])
    return snapshot


class VersionChainManager:
    """Writes incident heads and their versions; one call, one transaction."""

    def __init__(self, secret: Optional[str] = None, clock: Callable[[], datetime] = utcnow):
        self.secret = secret
        self.clock = clock

    # ---------------------------
    # Public operations
    # ---------------------------
    def create_incident(
        self,
        db: Session,
        *,
        organization_id: str,
        snapshot: Dict[str, Any],
        actor_id: str,
    ) -> Tuple[Incident, IncidentVersion]:
        """New incident head plus version 1, numbered within the organization."""

        def write() -> Tuple[Incident, IncidentVersion]:
            org = (
                db.query(Organization)
                .filter(Organization.id == organization_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
            if not org:
                raise NotFound("Organization not found.")

            current = int(org.last_incident_internal_id or 0)
            claimed = (
                db.query(Organization)
                .filter(
                    Organization.id == organization_id,
                    Organization.last_incident_internal_id == current,
                )
                .update(
                    {Organization.last_incident_internal_id: current + 1},
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise VersionConflict("Another incident was numbered concurrently.")

            now = self.clock()
            incident = Incident(
                id=str(uuid.uuid4()),
                organization_id=organization_id,
                internal_id=current + 1,
                current_version_number=1,
                status=snapshot["status"],
                created_at=now,
                created_by=actor_id,
                updated_at=now,
            )
            db.add(incident)
            db.flush()

            version = self._insert_version(db, incident.id, 1, snapshot, actor_id, now)
            return incident, version

        incident, version = atomic(db, write)
        db.refresh(incident)
        return incident, version

    def append_version(
        self,
        db: Session,
        *,
        incident_id: str,
        snapshot: Dict[str, Any],
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> Tuple[Incident, IncidentVersion]:
        """
        Version N+1 of an existing incident. When `organization_id` is given
        an incident owned by another organization is reported as NotFound.
        """

        def write() -> Tuple[Incident, IncidentVersion]:
            incident = (
                db.query(Incident)
                .filter(Incident.id == incident_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
            if not incident:
                raise NotFound()
            if organization_id is not None and incident.organization_id != organization_id:
                raise NotFound()

            current = int(incident.current_version_number)
            now = self.clock()
            claimed = (
                db.query(Incident)
                .filter(
                    Incident.id == incident_id,
                    Incident.current_version_number == current,
                )
                .update(
                    {
                        Incident.current_version_number: current + 1,
                        Incident.status: snapshot["status"],
                        Incident.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise VersionConflict()

            version = self._insert_version(db, incident_id, current + 1, snapshot, actor_id, now)
            return incident, version

        incident, version = atomic(db, write)
        db.refresh(incident)
        return incident, version

    # ---------------------------
    # Internals
    # ---------------------------
    def _insert_version(
        self,
        db: Session,
        incident_id: str,
        version_number: int,
        snapshot: Dict[str, Any],
        actor_id: str,
        created_at: datetime,
    ) -> IncidentVersion:
        evaluation = evaluate_snapshot(snapshot, now=created_at)

        for nonce in range(TOKEN_MAX_ATTEMPTS):
            token = generate_token(
                incident_id, version_number, snapshot, created_at, nonce=nonce, secret=self.secret
            )
            try:
                self._ensure_token_free(db, token)
            except TokenCollision:
                log.warning(
                    "Token collision for incident=%s v%s (nonce=%s), regenerating",
                    incident_id,
                    version_number,
                    nonce,
                )
                continue

            version = IncidentVersion(
                id=str(uuid.uuid4()),
                incident_id=incident_id,
                version_number=version_number,
                is_late=evaluation.is_late,
                token=token,
                token_nonce=nonce,
                created_at=created_at,
                created_by=actor_id,
                **snapshot,
            )
            db.add(version)
            db.flush()
            return version

        raise StorageUnavailable("Could not allocate a unique verification token.")

    @staticmethod
    def _ensure_token_free(db: Session, token: str) -> None:
        taken = db.query(IncidentVersion.id).filter(IncidentVersion.token == token).first()
        if taken:
            raise TokenCollision()


def atomic(db: Session, write: Callable[[], Any]) -> Any:
    """Run `write` and commit, or roll everything back and raise a registry error."""
    try:
        result = write()
        db.commit()
    except RegistryError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if is_write_race(exc):
            log.info("Concurrent write lost a uniqueness race, rolled back: %s", exc.orig)
            raise VersionConflict() from exc
        log.error("Integrity violation, write rolled back: %s", exc.orig)
        raise StorageUnavailable() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log.error("Storage failure, write rolled back: %s", exc)
        raise StorageUnavailable() from exc
    return result


def is_write_race(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _RACE_MARKERS)
