# breach_registry/api/v1/incidents.py
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from breach_registry.core.auth import get_current_user_id, get_db
from breach_registry.core.errors import NotFound
from breach_registry.schemas.incident import (
    DeadlineOut,
    DeleteOut,
    IncidentCreate,
    IncidentHistoryOut,
    IncidentListItemOut,
    IncidentOut,
    IncidentStatsOut,
    IncidentUpdate,
    IncidentVersionOut,
    IncidentWriteOut,
)
from breach_registry.services import registry
from breach_registry.services.audit import audit_log, ip_from_request

router = APIRouter(prefix="/incidents", tags=["incidents"])


def _write_out(result: registry.WriteResult) -> IncidentWriteOut:
    return IncidentWriteOut(
        success=True,
        incident=IncidentOut.model_validate(result.incident),
        version=IncidentVersionOut.model_validate(result.version),
        token=result.token,
    )


def _list_item_out(item: registry.IncidentListItem) -> IncidentListItemOut:
    return IncidentListItemOut(
        **IncidentOut.model_validate(item.incident).model_dump(),
        version_count=item.version_count,
        latest_version=IncidentVersionOut.model_validate(item.latest_version),
        deadline=DeadlineOut.model_validate(item.deadline),
    )


# ---------------------------
# CREATE
# ---------------------------
@router.post("", response_model=IncidentWriteOut, status_code=status.HTTP_201_CREATED)
def create_incident(
    payload: IncidentCreate,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """
    Record a new breach incident (version 1).
    Returns the verification token of the stored version.
    """
    result = registry.create_incident(db, payload.organization_id, user_id, payload)

    # AUDIT (best-effort)
    audit_log(
        db,
        organization_id=result.incident.organization_id,
        user_id=user_id,
        action="INCIDENT_CREATED",
        entity_type="incident",
        entity_id=result.incident.id,
        meta={
            "internal_id": result.incident.internal_id,
            "version_number": result.version.version_number,
            "status": result.version.status,
            "is_late": result.version.is_late,
        },
        ip=ip_from_request(request),
    )
    return _write_out(result)


# ---------------------------
# LIST / STATS
# ---------------------------
@router.get("", response_model=List[IncidentListItemOut])
def list_incidents(
    organization_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    items = registry.get_organization_incidents(db, organization_id)
    return [_list_item_out(i) for i in items]


@router.get("/stats", response_model=IncidentStatsOut)
def incident_stats(
    organization_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return IncidentStatsOut(**registry.get_organization_incident_stats(db, organization_id))


# ---------------------------
# READ (by id, with history)
# ---------------------------
@router.get("/{incident_id}", response_model=IncidentHistoryOut)
def get_incident(
    incident_id: str,
    organization_id: Optional[str] = Query(None, description="When given, the incident must belong to it"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    history = registry.get_incident_with_history(db, incident_id)
    if history is None:
        raise NotFound()
    if organization_id is not None and history.incident.organization_id != organization_id:
        raise NotFound()

    return IncidentHistoryOut(
        incident=IncidentOut.model_validate(history.incident),
        versions=[IncidentVersionOut.model_validate(v) for v in history.versions],
        deadline=DeadlineOut.model_validate(history.deadline),
    )


# ---------------------------
# UPDATE (append a version)
# ---------------------------
@router.put("/{incident_id}", response_model=IncidentWriteOut)
def update_incident(
    incident_id: str,
    payload: IncidentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    result = registry.update_incident(db, payload.organization_id, user_id, incident_id, payload)

    # AUDIT (best-effort)
    audit_log(
        db,
        organization_id=result.incident.organization_id,
        user_id=user_id,
        action="INCIDENT_UPDATED",
        entity_type="incident",
        entity_id=result.incident.id,
        meta={
            "internal_id": result.incident.internal_id,
            "version_number": result.version.version_number,
            "status": result.version.status,
            "is_late": result.version.is_late,
        },
        ip=ip_from_request(request),
    )
    return _write_out(result)


# ---------------------------
# DELETE (hard, irreversible)
# ---------------------------
@router.delete("/{incident_id}", response_model=DeleteOut)
def delete_incident(
    incident_id: str,
    request: Request,
    organization_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    summary = registry.delete_incident(db, incident_id, organization_id)

    # AUDIT (best-effort)
    audit_log(
        db,
        organization_id=organization_id,
        user_id=user_id,
        action="INCIDENT_DELETED",
        entity_type="incident",
        entity_id=incident_id,
        meta=summary,
        ip=ip_from_request(request),
    )
    return DeleteOut(success=True)
