# breach_registry/services/audit.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

log = logging.getLogger("breach_registry.audit")


# -----------------------------
# Helpers
# -----------------------------
def ip_from_request(request: Optional[Request]) -> Optional[str]:
    """
    Best-effort client IP extraction compatible with proxies.
    Order:
      - X-Forwarded-For (first in the list)
      - X-Real-IP
      - request.client.host
    """
    if request is None:
        return None

    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    client = getattr(request, "client", None)
    return getattr(client, "host", None)


def _dumps_meta(meta: Optional[Dict[str, Any]]) -> str:
    # default=str covers datetimes in delete summaries and deadline scans
    return json.dumps(meta or {}, ensure_ascii=False, separators=(",", ":"), default=str)


# -----------------------------
# Core API
# -----------------------------
def audit_log(
    db: Session,
    *,
    organization_id: Optional[str],
    user_id: Optional[str],
    action: str,
    entity_type: Optional[str],
    entity_id: Optional[str],
    meta: Optional[Dict[str, Any]],
    ip: Optional[str],
) -> bool:
    """
    Inserts and commits an audit record.
    Best-effort: a storage failure is logged and rolled back, never raised,
    so the caller's already-committed write stands. Returns True on success.
    """
    try:
        db.execute(
            text(
                """
                INSERT INTO audit_logs (
                    organization_id, user_id, action, entity_type, entity_id, meta, ip_address, created_at
                ) VALUES (
                    :organization_id, :user_id, :action, :entity_type, :entity_id, :meta, :ip, CURRENT_TIMESTAMP
                )
                """
            ),
            {
                "organization_id": organization_id,
                "user_id": user_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "meta": _dumps_meta(meta),
                "ip": ip,
            },
        )
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        log.warning("audit_log failed action=%s entity=%s/%s: %s", action, entity_type, entity_id, exc)
        return False
