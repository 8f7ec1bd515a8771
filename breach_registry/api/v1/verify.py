# breach_registry/api/v1/verify.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from breach_registry.core.auth import get_db
from breach_registry.core.errors import NotFound
from breach_registry.schemas.verification import VerificationOut
from breach_registry.services.verification import verify

router = APIRouter(prefix="/verify", tags=["verification"])


@router.get("/{token}", response_model=VerificationOut)
def verify_token(token: str, db: Session = Depends(get_db)):
    """Public: confirms a recorded incident version exists. No authentication."""
    result = verify(db, token)
    if result is None:
        raise NotFound("Unknown verification token.")
    return VerificationOut(valid=True, **result.as_dict())
