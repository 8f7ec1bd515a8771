# breach_registry/services/tokens.py
from __future__ import annotations

import hashlib
import hmac
import json
import re
from datetime import date, datetime
from typing import Any, Mapping, Optional

from breach_registry.core.config import get_token_secret

TOKEN_LENGTH = 64
TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Unsupported snapshot value: {type(value).__name__}")


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Stable serialization: sorted keys, compact separators, ISO datetimes."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def generate_token(
    incident_id: str,
    version_number: int,
    snapshot: Mapping[str, Any],
    created_at: datetime,
    *,
    nonce: int = 0,
    secret: Optional[str] = None,
) -> str:
    """
    Verification token of one incident version.

    HMAC-SHA256 over the canonical snapshot bound to its incident, version
    number and write time. The server key keeps third parties from
    recomputing a token out of guessed field values; `nonce` only changes
    when a (theoretical) collision forces a retry.
    """
    message = canonical_json(
        {
            "incident_id": incident_id,
            "version_number": int(version_number),
            "created_at": created_at,
            "nonce": int(nonce),
            "snapshot": dict(snapshot),
        }
    )
    key = (secret or get_token_secret()).encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def is_well_formed(token: Optional[str]) -> bool:
    return bool(token) and TOKEN_RE.fullmatch(token) is not None


def token_matches(version, *, secret: Optional[str] = None) -> bool:
    """
    Re-derive the token of a stored IncidentVersion and compare it with the
    stored one. False means the row no longer matches what was signed.
    """
    expected = generate_token(
        version.incident_id,
        version.version_number,
        version.snapshot(),
        version.created_at,
        nonce=version.token_nonce or 0,
        secret=secret,
    )
    return hmac.compare_digest(expected, version.token or "")
